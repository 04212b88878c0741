# medication/services/drug_lookup.py
import requests
from django.conf import settings
from typing import List, Dict, Any, Optional
import logging

from dosemate.exceptions import DoseMateError

logger = logging.getLogger(__name__)

# Public drug API field -> our field
FIELD_MAP = {
    'itemSeq': 'item_seq',
    'itemName': 'name',
    'entpName': 'manufacturer',
    'efcyQesitm': 'efficacy',
    'useMethodQesitm': 'usage',
    'atpnWarnQesitm': 'warnings',
    'packUnit': 'pack_unit',
    'itemImage': 'image_url',
}


class DrugLookupError(DoseMateError):
    """The external drug metadata service failed or is not configured."""
    code = 'lookup_failed'
    status_code = 502
    default_message = 'Drug information service is unavailable.'


def normalize_item(item: Dict[str, Any]) -> Dict[str, str]:
    return {ours: item.get(theirs) or '' for theirs, ours in FIELD_MAP.items()}


def _get_config():
    api_key = getattr(settings, 'OPEN_DRUG_API_KEY', '')
    base_url = getattr(settings, 'OPEN_DRUG_API_BASE_URL', '')
    if not api_key or not base_url:
        logger.error("Drug lookup called without OPEN_DRUG_API_KEY / OPEN_DRUG_API_BASE_URL")
        raise DrugLookupError("Drug information service is not configured.")
    return api_key, base_url


def _fetch_items(params: Dict[str, Any]) -> List[Dict[str, Any]]:
    api_key, base_url = _get_config()
    timeout = getattr(settings, 'OPEN_DRUG_API_TIMEOUT', 10)

    try:
        response = requests.get(
            base_url,
            params={'serviceKey': api_key, 'type': 'json', **params},
            timeout=timeout,
        )
    except requests.RequestException as e:
        logger.error(f"Drug API request failed: {str(e)}")
        raise DrugLookupError(f"Drug API request failed: {str(e)}")

    if response.status_code != 200:
        logger.error(f"Drug API returned {response.status_code}: {response.text[:200]}")
        raise DrugLookupError(f"Drug API returned status {response.status_code}.")

    try:
        body = response.json().get('body') or {}
    except ValueError as e:
        logger.error(f"Drug API returned invalid JSON: {str(e)}")
        raise DrugLookupError("Drug API returned an invalid response.")

    items = body.get('items') or []
    return items if isinstance(items, list) else [items]


def search_by_name(item_name: str, page: int = 1, rows: int = 20) -> List[Dict[str, str]]:
    """
    Search the public drug API by product name.

    Returns:
        list: Normalized items (item_seq, name, manufacturer, efficacy,
        usage, warnings, pack_unit, image_url)

    Raises:
        DrugLookupError: If the API is unreachable or misconfigured
    """
    items = _fetch_items({'itemName': item_name, 'pageNo': page, 'numOfRows': rows})
    logger.info(f"Drug search '{item_name}' returned {len(items)} items")
    return [normalize_item(item) for item in items]


def get_details(item_seq: str) -> Optional[Dict[str, str]]:
    """Details of one product by its item sequence number, or None."""
    items = _fetch_items({'itemSeq': item_seq})
    if not items:
        return None
    return normalize_item(items[0])
