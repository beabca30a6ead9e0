import os
from material_store.db.session import SessionLocal, engine, Base
from material_store.models.base import Category, Unit, UnitLembaga, User, UserRole
from material_store.core import security

DEFAULT_UNITS = [
    ("Pieces", "pcs"),
    ("Sak", "sak"),
    ("Batang", "btg"),
    ("Kilogram", "kg"),
    ("Meter", "m"),
    ("Dus", "dus"),
]

DEFAULT_UNIT_LEMBAGA = ["Pondok Putra", "Pondok Putri", "Madrasah Aliyah", "Madrasah Tsanawiyah", "Dapur Umum"]

DEFAULT_CATEGORIES = ["Semen", "Besi", "Cat", "Kayu", "Listrik", "Pipa"]


def init_db():
    print("Creating tables...")
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        admin = db.query(User).filter(User.username == "admin").first()
        if not admin:
            print("Creating superuser 'admin'...")
            db.add(User(
                username="admin",
                email="admin@tokomaterial.local",
                full_name="Administrator",
                hashed_password=security.get_password_hash(os.getenv("ADMIN_PASSWORD", "admin123")),
                role=UserRole.ADMIN.value
            ))
        else:
            print("Superuser already exists.")

        for name, abbreviation in DEFAULT_UNITS:
            if not db.query(Unit).filter(Unit.name == name).first():
                db.add(Unit(name=name, abbreviation=abbreviation))
        for name in DEFAULT_UNIT_LEMBAGA:
            if not db.query(UnitLembaga).filter(UnitLembaga.name == name).first():
                db.add(UnitLembaga(name=name))
        for name in DEFAULT_CATEGORIES:
            if not db.query(Category).filter(Category.name == name).first():
                db.add(Category(name=name))

        db.commit()
        print("Seed data ready.")
    finally:
        db.close()

if __name__ == "__main__":
    init_db()
