from datetime import date, datetime


def format_date(d):
    """Format a date as YYYY-MM-DD."""
    if not d:
        return ''
    if isinstance(d, str):
        d = datetime.strptime(d, '%Y-%m-%d').date()
    return d.isoformat()


def parse_date(date_str, default=None):
    """Parse an ISO date string (YYYY-MM-DD); empty input returns default."""
    if not date_str:
        return default
    if isinstance(date_str, date):
        return date_str
    return datetime.strptime(str(date_str).strip()[:10], '%Y-%m-%d').date()


def parse_amount(amount_str):
    """Parse a monetary amount, tolerating currency symbols and thousands separators."""
    if amount_str is None or amount_str == '':
        return None
    if isinstance(amount_str, (int, float)):
        return float(amount_str)
    amount_str = str(amount_str).strip().replace('$', '').replace(',', '')
    return float(amount_str)


def get_month_names():
    """Return English month names."""
    return {
        1: 'January', 2: 'February', 3: 'March', 4: 'April',
        5: 'May', 6: 'June', 7: 'July', 8: 'August',
        9: 'September', 10: 'October', 11: 'November', 12: 'December'
    }
