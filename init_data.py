from datetime import datetime, timedelta

from app import create_app
from app.extensions import db
from app.models import (
    User,
    UserRole,
    Order,
    OrderStatus,
    ServiceType,
    AppointmentService,
    Urgency,
    ServiceItem,
    ServiceCategory,
    DeviceType,
    PricingStrategy,
    PricingType,
    PricingStrategyServiceItem,
    PricingStrategyDeviceType,
    SystemConfig,
    ConfigValueType,
    ConfigCategory,
)
from app.services.payment_service import get_service_price

DEMO_PASSWORD = "123456"

app = create_app()

with app.app_context():
    users_data = [
        {"name": "管理员", "phone": "13800000001", "role": UserRole.ADMIN},
        {
            "name": "客服小王",
            "phone": "13800000002",
            "role": UserRole.CUSTOMER_SERVICE,
        },
        {
            "name": "维修师傅张三",
            "phone": "13800000003",
            "role": UserRole.REPAIRMAN,
        },
        {
            "name": "维修师傅李四",
            "phone": "13800000004",
            "role": UserRole.REPAIRMAN,
        },
        {"name": "普通用户王五", "phone": "13800000005", "role": UserRole.USER},
        {"name": "普通用户赵六", "phone": "13800000006", "role": UserRole.USER},
    ]

    users = {}
    for user_data in users_data:
        user = User.query.filter_by(phone=user_data["phone"]).first()
        if not user:
            user = User(
                phone=user_data["phone"],
                name=user_data["name"],
                role=user_data["role"],
            )
            user.set_password(DEMO_PASSWORD)
            db.session.add(user)
            db.session.flush()
            print(
                "Created %s: %s / %s"
                % (user.role.value, user.phone, DEMO_PASSWORD)
            )
        users[user_data["phone"]] = user

    wang = users["13800000005"]
    zhao = users["13800000006"]
    zhang = users["13800000003"]
    li = users["13800000004"]
    now = datetime.utcnow()

    orders_data = [
        {
            "owner": wang,
            "device_type": "手机",
            "device_model": "iPhone 14",
            "service_type": ServiceType.REPAIR,
            "appointment_service": AppointmentService.SCREEN_REPLACEMENT,
            "problem_description": "屏幕碎裂，无法正常显示",
            "urgency": Urgency.MEDIUM,
            "appointment_time": now + timedelta(days=1),
            "status": OrderStatus.PENDING,
        },
        {
            "owner": zhao,
            "device_type": "电脑",
            "device_model": "ThinkPad X1",
            "service_type": ServiceType.REPAIR,
            "appointment_service": None,
            "problem_description": "开机黑屏，风扇转动但无显示",
            "urgency": Urgency.LOW,
            "appointment_time": now + timedelta(days=2),
            "status": OrderStatus.IN_PROGRESS,
            "repairman": li,
            "repair_notes": "已检查硬件，疑似显卡问题",
        },
        {
            "owner": wang,
            "device_type": "平板",
            "device_model": "MatePad Pro",
            "service_type": ServiceType.APPOINTMENT,
            "appointment_service": AppointmentService.BATTERY_REPLACEMENT,
            "problem_description": "充电接口松动，无法正常充电",
            "urgency": Urgency.LOW,
            "appointment_time": now - timedelta(days=1),
            "status": OrderStatus.COMPLETED,
            "repairman": zhang,
            "repair_notes": "已更换充电接口，测试正常",
            "rating": (5, "维修很及时，师傅很专业！"),
        },
    ]

    if Order.query.count() == 0:
        for order_data in orders_data:
            owner = order_data["owner"]
            repairman = order_data.get("repairman")
            order = Order(
                user_id=owner.id,
                device_type=order_data["device_type"],
                device_model=order_data["device_model"],
                service_type=order_data["service_type"],
                appointment_service=order_data["appointment_service"],
                problem_description=order_data["problem_description"],
                urgency=order_data["urgency"],
                contact_name=owner.name,
                contact_phone=owner.phone,
                appointment_time=order_data["appointment_time"],
                status=order_data["status"],
                assigned_to=repairman.id if repairman else None,
                repair_notes=order_data.get("repair_notes"),
                amount=get_service_price(
                    order_data["service_type"],
                    order_data["appointment_service"],
                ),
            )
            if order.status == OrderStatus.COMPLETED:
                order.completed_at = now - timedelta(hours=20)
            if "rating" in order_data:
                order.rating_score, order.rating_comment = order_data["rating"]
                order.rated_at = now - timedelta(hours=12)
            db.session.add(order)
            print(
                f"  Created order: {order.device_model} "
                f"({order.status.value})"
            )

    service_items_data = [
        ("电脑清洁", "cleaning", 50, 60, ServiceCategory.MAINTENANCE,
         "电脑内部清洁，清除灰尘，提升散热效果"),
        ("屏幕更换", "screen_replacement", 300, 120, ServiceCategory.REPAIR,
         "更换损坏的显示屏"),
        ("电池更换", "battery_replacement", 150, 90, ServiceCategory.REPAIR,
         "更换老化或损坏的电池"),
        ("系统重装", "system_reinstall", 80, 180,
         ServiceCategory.INSTALLATION, "重新安装操作系统，恢复系统正常运行"),
        ("软件安装", "software_install", 30, 45,
         ServiceCategory.INSTALLATION, "安装和配置各类软件应用"),
        ("硬件升级", "hardware_upgrade", 100, 120, ServiceCategory.REPAIR,
         "升级内存、硬盘等硬件组件"),
        ("数据恢复", "data_recovery", 200, 240, ServiceCategory.REPAIR,
         "恢复丢失或损坏的数据文件"),
        ("病毒清除", "virus_removal", 60, 90, ServiceCategory.MAINTENANCE,
         "清除电脑病毒和恶意软件"),
    ]
    for name, code, price, minutes, category, description in \
            service_items_data:
        if not ServiceItem.query.filter_by(code=code).first():
            db.session.add(ServiceItem(
                name=name,
                code=code,
                base_price=price,
                estimated_duration=minutes,
                category=category,
                description=description,
            ))
            print(f"Created service type: {code}")

    device_types_data = [
        ("笔记本电脑", "laptop", "ThinkPad,MacBook,Dell XPS,HP EliteBook",
         "开机黑屏,键盘失灵,电池不充电,散热不良"),
        ("台式电脑", "desktop", "组装机,Dell OptiPlex,HP ProDesk",
         "无法开机,蓝屏死机,运行缓慢,噪音过大"),
        ("手机", "mobile", "iPhone,Samsung Galaxy,华为,小米",
         "屏幕破裂,电池老化,充电接口损坏,系统卡顿"),
        ("平板电脑", "tablet", "iPad,Surface,Android平板",
         "触摸失灵,无法充电,系统崩溃"),
        ("打印机", "printer", "HP LaserJet,Canon PIXMA,Epson EcoTank",
         "打印质量差,卡纸,无法连接"),
    ]
    for name, code, brands, issues in device_types_data:
        if not DeviceType.query.filter_by(code=code).first():
            db.session.add(DeviceType(
                name=name,
                code=code,
                category=code,
                brands=brands,
                common_issues=issues,
            ))
            print(f"Created device type: {code}")
    db.session.flush()

    all_items = ServiceItem.query.order_by(ServiceItem.id).all()
    all_devices = DeviceType.query.order_by(DeviceType.id).all()
    # Quotes use the lowest id strategy that covers the request, so the
    # narrower hourly strategy goes in first.
    strategies_data = [
        {
            "name": "按小时计费策略",
            "pricing_type": PricingType.HOURLY,
            "items": [i for i in all_items
                      if i.code in ("system_reinstall", "data_recovery")],
            "rules": {
                "base_price": 50,
                "hourly_rate": 80,
                "urgency_multiplier": {
                    "normal": 1.0, "urgent": 1.3, "emergency": 1.8},
                "discount_rules": [],
            },
        },
        {
            "name": "标准定价策略",
            "pricing_type": PricingType.FIXED,
            "items": all_items,
            # 0 falls back to the service type's base price
            "rules": {
                "base_price": 0,
                "hourly_rate": 0,
                "urgency_multiplier": {
                    "normal": 1.0, "urgent": 1.5, "emergency": 2.0},
                "discount_rules": [
                    {"condition": "订单金额满200元",
                     "discount_type": "percentage",
                     "discount_value": 5, "min_order_amount": 200},
                    {"condition": "订单金额满500元",
                     "discount_type": "percentage",
                     "discount_value": 10, "min_order_amount": 500},
                ],
            },
        },
    ]
    for strategy_data in strategies_data:
        if PricingStrategy.query.filter_by(
                name=strategy_data["name"]).first():
            continue
        strategy = PricingStrategy(
            name=strategy_data["name"],
            pricing_type=strategy_data["pricing_type"],
        )
        strategy.set_rules(strategy_data["rules"])
        strategy.service_links = [
            PricingStrategyServiceItem(service_item=item)
            for item in strategy_data["items"]
        ]
        strategy.device_links = [
            PricingStrategyDeviceType(device_type=device)
            for device in all_devices
        ]
        db.session.add(strategy)
        print(f"Created pricing strategy: {strategy.name}")

    configs_data = [
        ("notification.sms.enabled", False, ConfigValueType.BOOLEAN,
         ConfigCategory.NOTIFICATION, "是否启用短信通知", {"required": True}),
        ("notification.order.status_change", True, ConfigValueType.BOOLEAN,
         ConfigCategory.NOTIFICATION, "订单状态变更时发送通知",
         {"required": True}),
        ("business.order.max_images", 6, ConfigValueType.NUMBER,
         ConfigCategory.BUSINESS, "订单最大图片数量",
         {"required": True, "min": 1, "max": 10}),
        ("business.order.cancel_timeout", 24, ConfigValueType.NUMBER,
         ConfigCategory.BUSINESS, "订单自动取消超时时间（小时）",
         {"required": True, "min": 1, "max": 168}),
        ("business.working_hours",
         {"start": "09:00", "end": "18:00", "weekends": False},
         ConfigValueType.OBJECT, ConfigCategory.BUSINESS, "营业时间设置",
         None),
        ("system.maintenance_mode", False, ConfigValueType.BOOLEAN,
         ConfigCategory.SYSTEM, "系统维护模式", {"required": True}),
        ("system.session_timeout", 7200, ConfigValueType.NUMBER,
         ConfigCategory.SYSTEM, "用户会话超时时间（秒）",
         {"required": True, "min": 300, "max": 86400}),
        ("ui.theme.primary_color", "#1890ff", ConfigValueType.STRING,
         ConfigCategory.UI, "主题主色调", {"pattern": "^#[0-9A-Fa-f]{6}$"}),
        ("ui.pagination.page_size", 10, ConfigValueType.NUMBER,
         ConfigCategory.UI, "分页默认每页数量",
         {"required": True, "min": 5, "max": 100}),
        ("payment.methods", ["wechat", "alipay", "cash"],
         ConfigValueType.ARRAY, ConfigCategory.PAYMENT, "支持的支付方式",
         {"options": ["wechat", "alipay", "cash", "bank_card"]}),
    ]
    for key, value, value_type, category, description, rules in configs_data:
        if SystemConfig.query.filter_by(key=key).first():
            continue
        config = SystemConfig(
            key=key,
            value_type=value_type,
            category=category,
            description=description,
        )
        config.set_value(value)
        config.set_validation(rules)
        db.session.add(config)
        print(f"Created setting: {key}")

    db.session.commit()
    print("Data initialization completed!")
