import os


def _flag(name, default):
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def parse_promo_codes(raw):
    """Parse ``CODE:percent`` pairs separated by commas, e.g. ``HEALTH10:10,NEW5:5``."""
    codes = {}
    for chunk in (raw or "").split(","):
        if ":" not in chunk:
            continue
        code, percent = chunk.split(":", 1)
        try:
            codes[code.strip().upper()] = float(percent)
        except ValueError:
            continue
    return codes


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")

    MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017/brisons")
    MONGO_DBNAME = os.getenv("MONGO_DBNAME", "brisons")

    UPLOAD_FOLDER = os.getenv(
        "UPLOAD_FOLDER",
        os.path.join(os.path.dirname(os.path.abspath(__file__)), "static", "uploads"),
    )
    UPLOAD_URL_PREFIX = "/static/uploads"
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024
    ALLOWED_IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif"}
    ALLOWED_PRESCRIPTION_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "pdf"}
    MAX_PRESCRIPTION_FILES = 5

    # Pricing
    TAX_RATE = float(os.getenv("TAX_RATE", "0.18"))
    SHIPPING_FEE = float(os.getenv("SHIPPING_FEE", "50"))
    FREE_SHIPPING_THRESHOLD = float(os.getenv("FREE_SHIPPING_THRESHOLD", "500"))
    DELIVERY_DAYS = int(os.getenv("DELIVERY_DAYS", "2"))
    PROMO_CODES = parse_promo_codes(os.getenv("PROMO_CODES", ""))

    # Dispatching pharmacy
    PHARMACY_NAME = os.getenv("PHARMACY_NAME", "HealthCare Pharmacy")
    PHARMACY_LICENSE = os.getenv("PHARMACY_LICENSE", "DL-12345-2024")
    PHARMACY_PHARMACIST = os.getenv("PHARMACY_PHARMACIST", "Dr. Priya Sharma")
    PHARMACY_ADDRESS = os.getenv("PHARMACY_ADDRESS", "Shop 15, Bandra West, Mumbai")
    PHARMACY_PHONE = os.getenv("PHARMACY_PHONE", "+91 98765 12345")
    PHARMACY_LAT = os.getenv("PHARMACY_LAT", "19.0800")
    PHARMACY_LNG = os.getenv("PHARMACY_LNG", "72.8750")

    ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@brisons.com")
    ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")
    CREATE_DEFAULT_ADMIN = _flag("CREATE_DEFAULT_ADMIN", "true")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def pharmacy_location(config):
    """Return the dispatching pharmacy's location, or None when coordinates are unset."""
    try:
        lat = float(config["PHARMACY_LAT"])
        lng = float(config["PHARMACY_LNG"])
    except (KeyError, TypeError, ValueError):
        return None
    return {"lat": lat, "lng": lng, "address": config.get("PHARMACY_ADDRESS", "")}


def pharmacy_details(config):
    return {
        "name": config.get("PHARMACY_NAME"),
        "license": config.get("PHARMACY_LICENSE"),
        "pharmacist": config.get("PHARMACY_PHARMACIST"),
        "address": config.get("PHARMACY_ADDRESS"),
        "phone": config.get("PHARMACY_PHONE"),
    }
