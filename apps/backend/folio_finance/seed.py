from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from .core.config import settings
from .core.crypto import MIN_KEY_LENGTH, MIN_PASSWORD_LENGTH, encrypt_email, hash_password
from .core.database import session_scope
from .core.logging_config import configure_logging
from .models import Category, CategoryType, Currency, Permission, Role, User


logger = logging.getLogger(__name__)

STAFF = ["SUPERADMIN", "ADMIN"]

# code, name, description, category, default roles
PERMISSIONS: list[tuple[str, str, str, str, list[str]]] = [
    ("finance.view", "View finance", "Access the personal finance module", "finance", STAFF),
    ("finance.dashboard", "View finance dashboard", "See summaries and metrics", "finance", STAFF),
    ("finance.transactions.view", "View transactions", "List transactions", "finance", STAFF),
    ("finance.transactions.create", "Create transactions", "Record new transactions", "finance", STAFF),
    ("finance.transactions.edit", "Edit transactions", "Modify existing transactions", "finance", STAFF),
    ("finance.transactions.delete", "Delete transactions", "Delete transactions", "finance", STAFF),
    ("finance.accounts.view", "View accounts", "See financial accounts", "finance", STAFF),
    ("finance.accounts.manage", "Manage accounts", "Create, edit and archive accounts", "finance", STAFF),
    ("finance.budgets.view", "View budgets", "See configured budgets", "finance", STAFF),
    ("finance.budgets.manage", "Manage budgets", "Create, edit and delete budgets", "finance", STAFF),
    ("finance.goals.view", "View goals", "See savings goals", "finance", STAFF),
    ("finance.goals.manage", "Manage goals", "Create, edit and delete savings goals", "finance", STAFF),
    ("finance.ocr.use", "Use OCR", "Scan receipts", "finance", STAFF),
    ("finance.import", "Import data", "Import transactions from files", "finance", STAFF),
    ("finance.export", "Export data", "Export financial data", "finance", STAFF),
    ("finance.analysis.view", "View analysis", "See reports and analysis", "finance", STAFF),
    ("finance.categories.manage", "Manage categories", "Create and edit custom categories and rules", "finance", STAFF),
    ("finance.manage", "Administer finance", "Maintain shared finance data such as exchange rates", "finance", ["SUPERADMIN"]),
    ("users.view", "View users", "List users and the permission catalogue", "users", STAFF),
    ("users.permissions.edit", "Edit user permissions", "Grant or revoke per-user permissions", "users", ["SUPERADMIN"]),
    ("audit.view", "View audit log", "Read the audit log", "security", STAFF),
]

# code, name, symbol, decimals
CURRENCIES: list[tuple[str, str, str, int]] = [
    ("CLP", "Peso Chileno", "$", 0),
    ("USD", "Dólar Estadounidense", "$", 2),
    ("EUR", "Euro", "€", 2),
    ("BRL", "Real Brasileño", "R$", 2),
    ("ARS", "Peso Argentino", "$", 2),
    ("MXN", "Peso Mexicano", "$", 2),
    ("PEN", "Sol Peruano", "S/", 2),
    ("COP", "Peso Colombiano", "$", 0),
    ("GBP", "Libra Esterlina", "£", 2),
    ("JPY", "Yen Japonés", "¥", 0),
]

EXPENSE_CATEGORIES: list[tuple[str, str, str, list[str]]] = [
    ("Alimentación", "🍔", "#FF6B6B", ["supermercado", "restaurant", "cafe", "almuerzo", "comida", "delivery", "rappi", "uber eats", "pedidos ya"]),
    ("Transporte", "🚗", "#4ECDC4", ["uber", "didi", "beat", "taxi", "metro", "bus", "micro", "bencina", "gasolina", "estacionamiento", "tag", "peaje"]),
    ("Vivienda", "🏠", "#45B7D1", ["arriendo", "dividendo", "hipoteca", "gastos comunes", "condominio"]),
    ("Servicios Básicos", "💡", "#96CEB4", ["luz", "agua", "gas", "electricidad", "internet", "telefono", "celular", "entel", "movistar", "claro", "wom", "vtr"]),
    ("Salud", "🏥", "#DDA0DD", ["farmacia", "doctor", "medico", "clinica", "hospital", "isapre", "fonasa", "consulta", "examen", "cruz verde", "ahumada", "salcobrand"]),
    ("Educación", "📚", "#F7DC6F", ["colegio", "universidad", "curso", "libro", "matricula", "arancel", "udemy", "coursera"]),
    ("Entretenimiento", "🎬", "#BB8FCE", ["netflix", "spotify", "disney", "hbo", "amazon prime", "cine", "teatro", "concierto", "playstation", "xbox", "steam", "juego"]),
    ("Compras", "🛍️", "#F1948A", ["falabella", "ripley", "paris", "lider", "jumbo", "amazon", "aliexpress", "mercadolibre", "ropa", "zapatos"]),
    ("Restaurantes", "🍽️", "#E59866", ["restaurant", "pizzeria", "sushi", "mcdonalds", "burger king", "starbucks", "dunkin", "juan maestro"]),
    ("Mascotas", "🐕", "#A9CCE3", ["veterinario", "pet shop", "comida mascota", "perro", "gato"]),
    ("Seguros", "🛡️", "#85929E", ["seguro", "vida", "auto", "hogar", "salud"]),
    ("Suscripciones", "📱", "#5DADE2", ["suscripcion", "mensual", "anual", "premium", "pro", "plus"]),
    ("Impuestos", "🏛️", "#808B96", ["sii", "impuesto", "contribucion", "patente"]),
    ("Transferencias", "💸", "#7DCEA0", ["transferencia", "pago", "prestamo"]),
    ("Otros Gastos", "📦", "#BDC3C7", []),
]

INCOME_CATEGORIES: list[tuple[str, str, str, list[str]]] = [
    ("Salario", "💼", "#27AE60", ["sueldo", "salario", "nomina", "pago", "remuneracion"]),
    ("Freelance", "💻", "#3498DB", ["freelance", "proyecto", "honorario", "boleta"]),
    ("Inversiones", "📈", "#9B59B6", ["dividendo", "interes", "ganancia", "rendimiento", "fondo mutuo", "accion"]),
    ("Arriendo", "🏢", "#1ABC9C", ["arriendo", "alquiler", "renta"]),
    ("Ventas", "🏷️", "#E67E22", ["venta", "vendido", "marketplace"]),
    ("Regalos", "🎁", "#E91E63", ["regalo", "cumpleaños", "navidad", "aguinaldo"]),
    ("Reembolsos", "↩️", "#00BCD4", ["reembolso", "devolucion", "nota credito"]),
    ("Otros Ingresos", "💰", "#95A5A6", []),
]


class SeedConfigError(RuntimeError):
    pass


def seed_permissions(db: Session) -> int:
    for code, name, description, category, roles in PERMISSIONS:
        perm = db.query(Permission).filter_by(code=code).first()
        if not perm:
            perm = Permission(code=code)
            db.add(perm)
        perm.name = name
        perm.description = description
        perm.category = category
        perm.default_roles = list(roles)
    return len(PERMISSIONS)


def seed_currencies(db: Session) -> int:
    for code, name, symbol, decimals in CURRENCIES:
        cur = db.query(Currency).filter_by(code=code).first()
        if not cur:
            cur = Currency(code=code)
            db.add(cur)
        cur.name = name
        cur.symbol = symbol
        cur.decimals = decimals
        cur.is_active = True
    return len(CURRENCIES)


def seed_categories(db: Session) -> int:
    count = 0
    for cat_type, rows in ((CategoryType.EXPENSE, EXPENSE_CATEGORIES), (CategoryType.INCOME, INCOME_CATEGORIES)):
        for order, (name, icon, color, keywords) in enumerate(rows):
            cat = db.query(Category).filter_by(user_id=None, name=name, type=cat_type).first()
            if not cat:
                cat = Category(user_id=None, name=name, type=cat_type)
                db.add(cat)
            cat.icon = icon
            cat.color = color
            cat.keywords = list(keywords)
            cat.sort_order = order
            cat.is_active = True
            count += 1
    return count


def seed_superadmin(db: Session, email: str, password: str, name: Optional[str] = None, *, key: Optional[str] = None) -> User:
    """Create or update the SUPERADMIN, looked up by e-mail hash."""
    encrypted, digest = encrypt_email(email, key)
    user = db.query(User).filter_by(email_hash=digest).first()
    if not user:
        user = User(email_hash=digest)
        db.add(user)
    user.email_encrypted = encrypted
    user.password_hash = hash_password(password)
    user.name = name or settings.ADMIN_NAME
    user.role = Role.SUPERADMIN
    user.is_active = True
    return user


def _check_settings() -> tuple[str, str]:
    if not settings.ADMIN_EMAIL or not settings.ADMIN_PASSWORD:
        raise SeedConfigError("FOLIO_ADMIN_EMAIL and FOLIO_ADMIN_PASSWORD are required")
    if len(settings.ADMIN_PASSWORD) < MIN_PASSWORD_LENGTH:
        raise SeedConfigError(f"FOLIO_ADMIN_PASSWORD must be at least {MIN_PASSWORD_LENGTH} characters")
    if not settings.ENCRYPTION_KEY or len(settings.ENCRYPTION_KEY) < MIN_KEY_LENGTH:
        raise SeedConfigError(f"FOLIO_ENCRYPTION_KEY must be at least {MIN_KEY_LENGTH} characters")
    return settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD


def _seed_all(db: Session, email: str, password: str) -> None:
    seed_superadmin(db, email, password, settings.ADMIN_NAME)
    perms = seed_permissions(db)
    currencies = seed_currencies(db)
    categories = seed_categories(db)
    db.flush()
    logger.info("seeded %s permissions, %s currencies, %s categories", perms, currencies, categories)


def seed(db: Optional[Session] = None) -> None:
    """Idempotent: safe to run on every deploy."""
    email, password = _check_settings()
    if db is None:
        with session_scope() as own:
            _seed_all(own, email, password)
        return
    try:
        _seed_all(db, email, password)
        db.commit()
    except Exception:
        db.rollback()
        raise


if __name__ == "__main__":
    configure_logging()
    seed()
