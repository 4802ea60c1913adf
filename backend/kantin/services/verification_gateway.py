# Overview: Payment-proof verification strategies (image model or simulator).

"""
Verification Gateway

Given a payment-proof image and the expected (amount, merchant) pair, answer
accept/reject with a reason. Two interchangeable strategies:

- GeminiVerificationGateway: asks an image-understanding model over HTTP.
- SimulatedVerificationGateway: seeded random verdicts for environments
  without a configured model; rejects a configurable fraction of attempts
  with rotating canned reasons.

CONTRACT: a gateway never raises for transport or parse problems. Those come
back as accepted=False with GENERIC_FAILURE_REASON, never as a success.
"""

from __future__ import annotations

import base64
import json
import logging
import random
import re
from dataclasses import dataclass
from typing import Sequence

import httpx

logger = logging.getLogger(__name__)

GENERIC_FAILURE_REASON = "Bukti pembayaran tidak dapat diverifikasi, silakan coba lagi"
DEFAULT_REJECTION_REASON = "Validasi gagal"

SIMULATION_REASONS = (
    "Nominal tidak sesuai dengan total pembayaran",
    "Tanggal transaksi tidak valid",
    "Status transaksi tidak terdeteksi sebagai sukses",
    "Gambar buram atau tidak jelas",
    "Bukti transfer tidak ditemukan dalam gambar",
)

VERIFICATION_MODE_AUTO = "auto"
VERIFICATION_MODE_GEMINI = "gemini"
VERIFICATION_MODE_SIMULATED = "simulated"

_DATA_URL_PREFIX = re.compile(r"^data:(image/[\w.+-]+);base64,")
_JSON_OBJECT = re.compile(r"\{[^{}]*\}")


@dataclass(frozen=True)
class VerificationResult:
    accepted: bool
    reason: str | None = None

    def to_dict(self) -> dict:
        return {"accepted": self.accepted, "reason": self.reason}


def rejected(reason: str | None) -> VerificationResult:
    return VerificationResult(accepted=False, reason=reason or DEFAULT_REJECTION_REASON)


class VerificationGateway:
    """Abstract base for verification strategies."""
    name = "abstract"

    def verify(self, image: str | bytes, expected_amount: int, merchant_name: str) -> VerificationResult:
        raise NotImplementedError


class SimulatedVerificationGateway(VerificationGateway):
    """
    Random verdicts from a seeded generator.

    reject_rate=0.0 always accepts and reject_rate=1.0 always rejects, which
    is how tests force an outcome. Rejection reasons rotate through
    `reasons` in order.
    """
    name = VERIFICATION_MODE_SIMULATED

    def __init__(
        self,
        reject_rate: float = 0.1,
        seed: int | None = None,
        reasons: Sequence[str] = SIMULATION_REASONS,
    ) -> None:
        if not 0.0 <= reject_rate <= 1.0:
            raise ValueError("reject_rate must be between 0 and 1")
        if not reasons:
            raise ValueError("at least one rejection reason is required")
        self.reject_rate = reject_rate
        self.reasons = tuple(reasons)
        self._rng = random.Random(seed)
        self._next_reason = 0

    def verify(self, image: str | bytes, expected_amount: int, merchant_name: str) -> VerificationResult:
        if self._rng.random() >= self.reject_rate:
            return VerificationResult(accepted=True)

        reason = self.reasons[self._next_reason % len(self.reasons)]
        self._next_reason += 1
        return rejected(reason)


class GeminiVerificationGateway(VerificationGateway):
    """Verify proofs with the Gemini generateContent API."""
    name = VERIFICATION_MODE_GEMINI

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-1.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    def _endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    @staticmethod
    def _prompt(expected_amount: int, merchant_name: str) -> str:
        return (
            f"Analisis bukti pembayaran ini. Total yang harus dibayar adalah Rp {expected_amount} "
            f"kepada merchant {merchant_name}.\n"
            "Periksa apakah:\n"
            f"1. Nominal transfer sesuai dengan Rp {expected_amount}\n"
            "2. Status transaksi adalah SUKSES/BERHASIL\n"
            "3. Tanggal transaksi adalah hari ini\n"
            f"4. Nama merchant penerima adalah {merchant_name}\n\n"
            'Jawab dalam format JSON: {"valid": true/false, "reason": "alasan jika tidak valid"}'
        )

    @staticmethod
    def _inline_image(image: str | bytes) -> dict:
        if isinstance(image, bytes):
            return {"mimeType": "image/jpeg", "data": base64.b64encode(image).decode("ascii")}

        match = _DATA_URL_PREFIX.match(image)
        if match:
            return {"mimeType": match.group(1), "data": image[match.end():]}
        return {"mimeType": "image/jpeg", "data": image}

    def build_request(self, image: str | bytes, expected_amount: int, merchant_name: str) -> dict:
        return {
            "contents": [{
                "parts": [
                    {"text": self._prompt(expected_amount, merchant_name)},
                    {"inlineData": self._inline_image(image)},
                ]
            }]
        }

    @staticmethod
    def parse_response(payload: dict) -> VerificationResult:
        """
        Extract the {"valid": ..., "reason": ...} verdict from a model reply.

        Anything that does not contain a well-formed verdict is a rejection.
        """
        try:
            text = payload["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            return rejected(GENERIC_FAILURE_REASON)

        match = _JSON_OBJECT.search(text or "")
        if not match:
            return rejected(GENERIC_FAILURE_REASON)

        try:
            verdict = json.loads(match.group(0))
        except json.JSONDecodeError:
            return rejected(GENERIC_FAILURE_REASON)

        if not isinstance(verdict, dict):
            return rejected(GENERIC_FAILURE_REASON)

        if verdict.get("valid") is True:
            return VerificationResult(accepted=True)
        return rejected(verdict.get("reason"))

    def verify(self, image: str | bytes, expected_amount: int, merchant_name: str) -> VerificationResult:
        body = self.build_request(image, expected_amount, merchant_name)
        client = self._client or httpx.Client(timeout=self.timeout)
        try:
            response = client.post(self._endpoint(), params={"key": self.api_key}, json=body)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError):
            logger.warning("Verification gateway request failed", exc_info=True)
            return rejected(GENERIC_FAILURE_REASON)
        finally:
            if self._client is None:
                client.close()

        return self.parse_response(payload)


def build_gateway(config) -> VerificationGateway:
    """
    Pick a gateway from app config.

    VERIFICATION_MODE "auto" uses Gemini when GEMINI_API_KEY is set and the
    simulator otherwise.
    """
    mode = (config.get("VERIFICATION_MODE") or VERIFICATION_MODE_AUTO).lower()
    api_key = config.get("GEMINI_API_KEY")

    if mode == VERIFICATION_MODE_AUTO:
        mode = VERIFICATION_MODE_GEMINI if api_key else VERIFICATION_MODE_SIMULATED

    if mode == VERIFICATION_MODE_GEMINI:
        if not api_key:
            raise ValueError("VERIFICATION_MODE=gemini requires GEMINI_API_KEY")
        return GeminiVerificationGateway(
            api_key=api_key,
            model=config.get("GEMINI_MODEL", "gemini-1.5-flash"),
            base_url=config.get("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"),
            timeout=config.get("VERIFICATION_TIMEOUT_SECONDS"),
        )

    if mode == VERIFICATION_MODE_SIMULATED:
        return SimulatedVerificationGateway(
            reject_rate=config.get("SIMULATION_REJECT_RATE", 0.1),
            seed=config.get("SIMULATION_SEED"),
        )

    raise ValueError(f"Unknown VERIFICATION_MODE: {mode}")
