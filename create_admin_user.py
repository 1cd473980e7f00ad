from dispatch import create_app, db, models, utils

ADMIN_PHONE = '010-0000-0000'

app = create_app()

with app.app_context():
    phone = utils.format_phone_number(ADMIN_PHONE)
    admin = db.session.execute(db.select(models.User).filter_by(phone=phone)).scalar_one_or_none()
    if not admin:
        admin = models.User(
            name='관리자',
            phone=phone,
            email='admin@example.com',
            role=models.UserRole.ADMIN
        )
        admin.set_password('123456')
        db.session.add(admin)
        db.session.commit()
        print(f"Created Admin user: {ADMIN_PHONE} / 123456")
    else:
        print("Admin user already exists")
