"""OpenTelemetry metrics for the certificate depot."""

from collections.abc import Iterator

from opentelemetry import metrics

meter = metrics.get_meter("depot")

# Certificate records
certificates_stored_total = meter.create_counter(
    name="depot_certificates_stored_total",
    description="Total certificate records written",
    unit="1",
)

certificate_store_rejections_total = meter.create_counter(
    name="depot_certificate_store_rejections_total",
    description="Certificates rejected before being written",
    unit="1",
)

# Challenges
challenges_issued_total = meter.create_counter(
    name="depot_challenges_issued_total",
    description="Total enrollment challenges issued",
    unit="1",
)

challenge_redemptions_total = meter.create_counter(
    name="depot_challenge_redemptions_total",
    description="Challenge redemption attempts by result",
    unit="1",
)

# Authority key derivation is the slow part of bootstrap
authority_key_decryption_duration = meter.create_histogram(
    name="depot_authority_key_decryption_duration_seconds",
    description="Time spent deriving the key and decrypting the authority private key",
    unit="s",
)

_authority_source: str | None = None


def _get_authority_loaded(
    options: metrics.CallbackOptions,
) -> Iterator[metrics.Observation]:
    """Callback to report whether the authority is available."""
    if _authority_source:
        yield metrics.Observation(1, {"source": _authority_source})
    else:
        yield metrics.Observation(0, {"source": "none"})


authority_loaded_gauge = meter.create_observable_gauge(
    name="depot_authority_loaded",
    description="Authority certificate and key available (1=yes, 0=no)",
    unit="1",
    callbacks=[_get_authority_loaded],
)


class DepotMetrics:
    """Facade for depot metrics with proper labels."""

    def record_certificate_stored(self, origin: str) -> None:
        """Labels: origin=put|issue|authority"""
        certificates_stored_total.add(1, {"origin": origin})

    def record_certificate_rejected(self, reason: str) -> None:
        """Labels: reason=invalid|serial_range|serial_mismatch"""
        certificate_store_rejections_total.add(1, {"reason": reason})

    def record_challenge_issued(self) -> None:
        challenges_issued_total.add(1)

    def record_challenge_redeemed(self, result: str) -> None:
        """Labels: result=accepted|not_found|expired"""
        challenge_redemptions_total.add(1, {"result": result})

    def record_key_decryption(self, duration_seconds: float) -> None:
        authority_key_decryption_duration.record(duration_seconds)

    def record_authority_loaded(self, source: str) -> None:
        """Labels: source=created|loaded"""
        global _authority_source
        _authority_source = source


# Singleton instance
depot_metrics = DepotMetrics()
