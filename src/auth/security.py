"""Access token parsing.

Access tokens are opaque strings of the form ``<user segment><delimiter><secret>``.
Only the leading segment is used here: it names the user the token was issued
to, and the user's primary key is that segment namespaced with a prefix.
"""

DEFAULT_TOKEN_DELIMITER = ":"
DEFAULT_USER_KEY_PREFIX = "USER_"


class MalformedTokenError(ValueError):
    """Token has no usable user segment."""


def extract_user_segment(token: str, delimiter: str = DEFAULT_TOKEN_DELIMITER) -> str:
    """Return the leading segment of an access token, whitespace included.

    Raises:
        MalformedTokenError: If the leading segment is empty
    """
    segment = token.split(delimiter, 1)[0]
    if not segment:
        msg = "Access token has an empty user segment"
        raise MalformedTokenError(msg)
    return segment


def user_key_for_token(
    token: str,
    delimiter: str = DEFAULT_TOKEN_DELIMITER,
    prefix: str = DEFAULT_USER_KEY_PREFIX,
) -> str:
    """Derive the namespaced user primary key for an access token.

    Example:
        >>> user_key_for_token("42:s3cr3t")
        'USER_42'
    """
    return f"{prefix}{extract_user_segment(token, delimiter)}"
