"""Text helpers."""
import re
import unicodedata


def slugify(value: str, max_length: int = 200) -> str:
    """'Thé Vert Matcha' -> 'the-vert-matcha'."""
    normalized = unicodedata.normalize('NFKD', value or '')
    ascii_text = normalized.encode('ascii', 'ignore').decode('ascii').lower()
    slug = re.sub(r'[^a-z0-9]+', '-', ascii_text).strip('-')
    return slug[:max_length].rstrip('-')
