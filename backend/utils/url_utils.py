"""
URL normalization utilities

Source identity for corroboration and hub thresholds is derived here:
two signals come from "distinct sources" when their source keys differ.
"""
from urllib.parse import urlparse, urlunparse, parse_qs


# Blacklist of tracking parameters to remove
TRACKING_PARAMS = {
    'utm_source', 'utm_medium', 'utm_campaign', 'utm_term', 'utm_content',
    'fbclid', 'gclid', 'msclkid', 'mc_cid', 'mc_eid',
    '_ga', '_gl', 'ref',
}

SOURCE_KEY_MODES = ('domain', 'url')


def normalize_url(url: str) -> str:
    """
    Normalize URL to canonical form for evidence deduplication.

    Removes:
    - www. prefix
    - Trailing slashes (except when a query string is present)
    - URL fragments (#)
    - Common tracking parameters (utm_*, fbclid, etc.)
    """
    parsed = urlparse(url)

    netloc = parsed.netloc.lower()
    if netloc.startswith('www.'):
        netloc = netloc[4:]

    if parsed.query:
        path = parsed.path
    else:
        path = parsed.path.rstrip('/') if parsed.path != '/' else '/'

    if parsed.query:
        params = parse_qs(parsed.query)
        clean_params = {k: v for k, v in params.items() if k.lower() not in TRACKING_PARAMS}
        query = '&'.join(f"{k}={v[0]}" for k, v in sorted(clean_params.items()))
    else:
        query = ''

    return urlunparse((
        parsed.scheme or 'https',
        netloc,
        path,
        '',
        query,
        ''
    ))


def extract_domain(url: str) -> str:
    """
    Extract domain from URL, stripping www prefix.

    Bare hosts without a scheme ('example.org/a') are accepted.

    Returns:
        Domain string (e.g., 'example.com')
    """
    if not url:
        return ''
    if '://' not in url:
        url = f"https://{url}"
    try:
        domain = urlparse(url).netloc.lower()
        if domain.startswith('www.'):
            domain = domain[4:]
        return domain
    except (ValueError, AttributeError):
        return url


def source_key(url: str, mode: str = 'domain') -> str:
    """
    Identity of the source behind a URL.

    mode='domain': the host ('example.org')
    mode='url':    the normalized URL without scheme ('example.org/a')
    """
    if mode not in SOURCE_KEY_MODES:
        raise ValueError(f"Invalid source key mode: {mode}. Must be one of: {SOURCE_KEY_MODES}")
    if mode == 'domain':
        return extract_domain(url)
    if not url:
        return ''
    if '://' not in url:
        url = f"https://{url}"
    return normalize_url(url).split('://', 1)[1].rstrip('/')
