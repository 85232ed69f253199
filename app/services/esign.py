"""
E-signature provider client (Dropbox Sign style API).

Only the one call the credit ledger gates is implemented: send a document URL
to a signer and get back the provider's tracking id. Every call is bounded by
ESIGN_PROVIDER_TIMEOUT_SECONDS end to end, not just per socket phase,
so a trickling response cannot outlive the credit reservation. All failures
surface as ProviderCallFailure.
"""
import json
import time
from typing import Dict, Optional

import httpx
from flask import current_app

from app.billing.errors import ProviderCallFailure


class ESignClient:
    def __init__(self, base_url: str, api_key: str, timeout: float = 30.0, test_mode: bool = True,
                 transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.test_mode = test_mode
        self._transport = transport

    def _http(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            auth=(self.api_key, ""),
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
        )

    def send_signature_request(self, *, document_url: str, title: str, signer_email: str,
                               signer_name: str, metadata: Optional[Dict[str, str]] = None) -> str:
        form = {
            "title": title,
            "file_url[0]": document_url,
            "signers[0][email_address]": signer_email,
            "signers[0][name]": signer_name,
            "test_mode": "1" if self.test_mode else "0",
        }
        for key, value in (metadata or {}).items():
            form[f"metadata[{key}]"] = str(value)

        deadline = time.monotonic() + self.timeout
        body = bytearray()
        try:
            with self._http() as http:
                with http.stream("POST", "/signature_request/send", data=form) as resp:
                    for chunk in resp.iter_bytes():
                        body.extend(chunk)
                        if time.monotonic() > deadline:
                            raise ProviderCallFailure("The signing provider timed out. No credit was used.")
        except httpx.TimeoutException as e:
            raise ProviderCallFailure("The signing provider timed out. No credit was used.") from e
        except httpx.HTTPError as e:
            raise ProviderCallFailure("Could not reach the signing provider. No credit was used.") from e

        if resp.status_code >= 400:
            raise ProviderCallFailure(
                f"The signing provider rejected the request ({resp.status_code}). No credit was used.",
                status_code=resp.status_code,
            )
        try:
            request_id = (json.loads(bytes(body)).get("signature_request") or {}).get("signature_request_id")
        except ValueError as e:
            raise ProviderCallFailure("The signing provider returned an unreadable response.") from e
        if not request_id:
            raise ProviderCallFailure("The signing provider returned no request id.")
        return request_id


def get_client() -> ESignClient:
    cfg = current_app.config
    api_key = cfg.get("ESIGN_API_KEY")
    if not api_key:
        raise ProviderCallFailure("E-signature provider is not configured.")
    return ESignClient(
        base_url=cfg.get("ESIGN_API_BASE_URL"),
        api_key=api_key,
        timeout=float(cfg.get("ESIGN_PROVIDER_TIMEOUT_SECONDS", 30)),
        test_mode=bool(cfg.get("ESIGN_TEST_MODE", True)),
    )
