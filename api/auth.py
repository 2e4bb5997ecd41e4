from fastapi import HTTPException, Security
import os
from fastapi.security.api_key import APIKeyHeader
from dotenv import load_dotenv

load_dotenv()
API_KEY = os.getenv("API_KEY")
APIKEY_NAME = "X-API-Key"
api_key_header = APIKeyHeader(name=APIKEY_NAME, auto_error=False)


async def get_api_key(api_key_header: str = Security(api_key_header)):
    """
    Check the X-API-Key header of a harvest request.

    FastAPI dependency guarding every ingress route. The key is read from
    the X-API-Key header (APIKEY_NAME) and compared with the API_KEY
    environment variable.

    Args:
        api_key_header (str): value of the X-API-Key header via Security
            dependency injection, or None when the header is absent

    Returns:
        str: the validated API key, or None when API_KEY is not configured

    Raises:
        HTTPException: 401 if the header is missing
        HTTPException: 403 if the header does not match API_KEY

    Note:
        When API_KEY is unset the ingress runs open and every request is
        accepted, for local use behind the caller's own network boundary.
    """
    if not API_KEY:
        return None
    if not api_key_header:
        raise HTTPException(status_code=401, detail="Missing API Key")
    if api_key_header != API_KEY:
        raise HTTPException(status_code=403, detail="Forbidden")
    return api_key_header
