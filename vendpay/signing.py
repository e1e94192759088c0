import hashlib
import hmac

EXCLUDED_KEYS = ("sign", "signature", "sign_type")


def md5_sign(params: dict, key: str) -> str:
    """
    Sign a callback payload with the merchant key (lowercase MD5).

    1. Drop sign / signature / sign_type and empty values.
    2. Sort the remaining keys in ASCII order.
    3. Join as a=b&c=d (values not URL encoded) and append the key.
    4. MD5 the result.

    :param params: callback fields
    :param key: merchant key
    :return: lowercase hex digest
    """
    filtered_params = {
        k: v for k, v in params.items()
        if k not in EXCLUDED_KEYS and v not in (None, "")
    }
    sign_str = "&".join(f"{k}={filtered_params[k]}" for k in sorted(filtered_params))
    return hashlib.md5(f"{sign_str}{key}".encode("utf-8")).hexdigest().lower()


class Md5SignatureVerifier:
    def __init__(self, key: str):
        self.key = key

    def verify(self, params: dict, signature: str) -> bool:
        expected = md5_sign(params, self.key)
        return hmac.compare_digest(expected, (signature or "").lower())
