from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse


def build_redirect_url(redirect_uri: str, params: dict[str, str | None]) -> str:
    """
    Append query parameters to a redirect URI, keeping any it already has.

    Parameters whose value is None are left out.
    """
    parsed = urlparse(redirect_uri)
    query = parse_qsl(parsed.query, keep_blank_values=True)
    query.extend((k, v) for k, v in params.items() if v is not None)
    return urlunparse(parsed._replace(query=urlencode(query)))
