"""LabSCim ADR algorithm.

Pure decision function of the network server: from the current device
configuration and its recent uplink history, compute the data rate, the TX
power index and the number of transmissions (NbTrans) to request.

Nothing here keeps state between calls; the host owns the uplink history and
is responsible for sending the resulting ``LinkADRReq``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

logger = logging.getLogger(__name__)

# Nombre minimal d'uplinks avant d'estimer les pertes / d'ajuster DR et puissance
REQUIRED_HISTORY_COUNT = 10
# Un pas ADR correspond à 3 dB de marge
STEP_DB = 3.0

# Lignes : taux de pertes (<5 %, <10 %, <30 %, >=30 %), colonnes : NbTrans 1..3
PKT_LOSS_RATE_TABLE = (
    (1, 1, 2),
    (1, 2, 3),
    (2, 3, 3),
    (3, 3, 3),
)
PKT_LOSS_RATE_BOUNDS = (5.0, 10.0, 30.0)


class InsufficientMatchingHistory(ValueError):
    """No uplink of the history was received with the current TX power index."""


@dataclass(frozen=True)
class UplinkRecord:
    """One received uplink as stored by the network server."""
    fcnt: int
    max_snr: float
    tx_power_index: int


@dataclass(frozen=True)
class AdrRequest:
    adr: bool
    dr: int
    tx_power_index: int
    nb_trans: int
    max_dr: int
    max_tx_power_index: int
    required_snr_for_dr: float
    installation_margin: float
    uplink_history: tuple[UplinkRecord, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AdrResponse:
    dr: int
    tx_power_index: int
    nb_trans: int


def packet_loss_percentage(history: Sequence[UplinkRecord]) -> float:
    """Return the uplink loss rate (%) derived from frame counter gaps.

    With fewer than ``REQUIRED_HISTORY_COUNT`` records the loss is assumed to
    be zero. A frame counter going backwards (rollover or out-of-order
    records) counts as no loss for that pair.
    """
    if len(history) < REQUIRED_HISTORY_COUNT:
        return 0.0

    lost_packets = 0
    previous_fcnt = history[0].fcnt
    for record in history[1:]:
        # on attend toujours un écart de 1
        delta = record.fcnt - previous_fcnt
        if delta < 0:
            logger.warning(
                f"Frame counter regression {previous_fcnt} -> {record.fcnt}, ignored for loss estimation"
            )
        elif delta > 1:
            lost_packets += delta - 1
        previous_fcnt = record.fcnt

    return lost_packets / len(history) * 100


def get_nb_trans(current_nb_trans: int, pkt_loss_rate: float) -> int:
    """Select the new NbTrans from the packet loss table."""
    current_nb_trans = min(max(current_nb_trans, 1), 3)

    row = len(PKT_LOSS_RATE_BOUNDS)
    for i, bound in enumerate(PKT_LOSS_RATE_BOUNDS):
        if pkt_loss_rate < bound:
            row = i
            break
    return PKT_LOSS_RATE_TABLE[row][current_nb_trans - 1]


def mean_snr(history: Sequence[UplinkRecord], tx_power_index: int) -> float:
    """Mean of ``max_snr`` over the uplinks sent with ``tx_power_index``.

    Raises :class:`InsufficientMatchingHistory` when none matches.
    """
    snrs = [m.max_snr for m in history if m.tx_power_index == tx_power_index]
    if not snrs:
        raise InsufficientMatchingHistory(
            f"no uplink in history with TX power index {tx_power_index}"
        )
    return sum(snrs) / len(snrs)


def max_snr(history: Sequence[UplinkRecord]) -> float | None:
    """Best SNR of the history, whatever the TX power index (None if empty)."""
    if not history:
        return None
    return max(m.max_snr for m in history)


def snr_margin(req: AdrRequest) -> float:
    """Link margin (dB) at the request's current TX power index."""
    snr_m = mean_snr(req.uplink_history, req.tx_power_index)
    return snr_m - req.required_snr_for_dr - req.installation_margin


def steps_from_margin(margin: float) -> int:
    """Number of ADR steps; ``int()`` truncates toward zero (-2 dB -> 0)."""
    return int(margin / STEP_DB)


def ideal_tx_power_index_and_dr(
    n_step: int,
    tx_power_index: int,
    dr: int,
    max_tx_power_index: int,
    max_dr: int,
) -> tuple[int, int]:
    """Walk DR / TX power index ``|n_step|`` times toward the target.

    Each step is consumed even when a bound prevents any change.
    """
    while n_step > 0:
        if dr < max_dr:
            # augmenter le DR
            dr += 1
        elif tx_power_index < max_tx_power_index:
            # diminuer la puissance
            tx_power_index += 1
        n_step -= 1

    while n_step < 0:
        if tx_power_index > 0:
            # augmenter la puissance
            tx_power_index -= 1
        n_step += 1

    return tx_power_index, dr


def handle(req: AdrRequest) -> AdrResponse:
    """Compute the ADR answer for ``req``. Never raises."""
    dr = req.dr
    tx_power_index = req.tx_power_index
    nb_trans = req.nb_trans

    if not req.adr:
        return AdrResponse(dr=dr, tx_power_index=tx_power_index, nb_trans=nb_trans)

    # Le DR n'est abaissé que s'il dépasse le DR maximal autorisé
    if dr > req.max_dr:
        dr = req.max_dr

    nb_trans = get_nb_trans(req.nb_trans, packet_loss_percentage(req.uplink_history))

    if len(req.uplink_history) > REQUIRED_HISTORY_COUNT:
        try:
            margin = snr_margin(req)
        except InsufficientMatchingHistory as exc:
            logger.debug(f"ADR step adjustment skipped: {exc}")
        else:
            n_step = steps_from_margin(margin)
            tx_power_index, dr = ideal_tx_power_index_and_dr(
                n_step, req.tx_power_index, dr, req.max_tx_power_index, req.max_dr
            )
            logger.debug(
                f"ADR margin={margin:.2f} dB nstep={n_step} -> DR{dr} TXPower{tx_power_index}"
            )

    return AdrResponse(dr=dr, tx_power_index=tx_power_index, nb_trans=nb_trans)


class LabSCimHandler:
    """Registry facade around :func:`handle`."""

    def id(self) -> str:
        return "labscimadr"

    def name(self) -> str:
        return "LabSCim ADR algorithm"

    def handle(self, req: AdrRequest) -> AdrResponse:
        return handle(req)
