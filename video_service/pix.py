"""Static PIX "copia e cola" payload (BR Code, EMV merchant-presented format)."""

import unicodedata

GUI_PIX = "br.gov.bcb.pix"
CURRENCY_BRL = "986"
COUNTRY_CODE = "BR"


def crc16_ccitt(payload: str) -> str:
    """CRC16/CCITT-FALSE (poly 0x1021, init 0xFFFF) as four uppercase hex digits."""
    crc = 0xFFFF
    for byte in payload.encode("utf-8"):
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ 0x1021) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return f"{crc:04X}"


def _field(field_id: str, value: str) -> str:
    return f"{field_id}{len(value):02d}{value}"


def _ascii(value: str, max_length: int) -> str:
    # BR Code only accepts plain characters in the merchant fields.
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return normalized.upper()[:max_length]


def build_pix_code(pix_key: str, merchant_name: str, merchant_city: str, amount: str = None, txid: str = "***") -> str:
    merchant_account = _field("00", GUI_PIX) + _field("01", pix_key)

    payload = _field("00", "01")
    payload += _field("26", merchant_account)
    payload += _field("52", "0000")
    payload += _field("53", CURRENCY_BRL)
    if amount:
        payload += _field("54", amount)
    payload += _field("58", COUNTRY_CODE)
    payload += _field("59", _ascii(merchant_name, 25))
    payload += _field("60", _ascii(merchant_city, 15))
    payload += _field("62", _field("05", txid))
    payload += "6304"
    return payload + crc16_ccitt(payload)
