from app.utils.currency import cents_to_reais, reais_to_cents
from app.utils.date_utils import utcnow, ensure_utc, seconds_until

__all__ = ["cents_to_reais", "reais_to_cents", "utcnow", "ensure_utc", "seconds_until"]
