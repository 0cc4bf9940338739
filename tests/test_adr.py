import logging
import sys
from pathlib import Path

import pytest

# Allow importing the package from the repository root
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from labscim_adr.adr import (  # noqa: E402
    AdrRequest,
    AdrResponse,
    InsufficientMatchingHistory,
    LabSCimHandler,
    UplinkRecord,
    get_nb_trans,
    handle,
    ideal_tx_power_index_and_dr,
    mean_snr,
    packet_loss_percentage,
    steps_from_margin,
)


def _history(fcnts, snr=20.0, tx_power_index=0):
    return tuple(UplinkRecord(fcnt=f, max_snr=snr, tx_power_index=tx_power_index) for f in fcnts)


def _request(**kwargs) -> AdrRequest:
    params = dict(
        adr=True,
        dr=2,
        tx_power_index=0,
        nb_trans=1,
        max_dr=5,
        max_tx_power_index=3,
        required_snr_for_dr=5.0,
        installation_margin=2.0,
        uplink_history=(),
    )
    params.update(kwargs)
    return AdrRequest(**params)


def test_identity():
    h = LabSCimHandler()
    assert h.id() == "labscimadr"
    assert h.name() == "LabSCim ADR algorithm"


def test_adr_disabled_returns_current_state():
    req = _request(adr=False, dr=5, tx_power_index=2, nb_trans=1, max_dr=3,
                   uplink_history=_history(range(0, 40, 2)))
    assert handle(req) == AdrResponse(dr=5, tx_power_index=2, nb_trans=1)


def test_dr_clamped_with_empty_history():
    resp = handle(_request(dr=7, max_dr=5))
    assert resp.dr == 5
    assert resp.nb_trans == 1
    assert resp.tx_power_index == 0


def test_nb_trans_below_range_is_clamped():
    resp = handle(_request(nb_trans=0))
    assert resp.nb_trans == 1


def test_good_link_raises_dr_then_reduces_power():
    # marge = 20 - 5 - 2 = 13 dB -> 4 pas
    req = _request(uplink_history=_history(range(11)))
    resp = handle(req)
    assert resp == AdrResponse(dr=5, tx_power_index=1, nb_trans=1)


def test_small_negative_margin_truncates_to_zero_steps():
    # marge = 5 - 5 - 2 = -2 dB -> int(-2/3) == 0
    req = _request(uplink_history=_history(range(11), snr=5.0))
    resp = handle(req)
    assert (resp.dr, resp.tx_power_index) == (2, 0)


def test_negative_margin_increases_power_only():
    # marge = 0 - 5 - 2 = -7 dB -> -2 pas
    req = _request(tx_power_index=3, uplink_history=_history(range(11), snr=0.0, tx_power_index=3))
    resp = handle(req)
    assert resp.tx_power_index == 1
    assert resp.dr == 2


def test_short_history_only_clamps():
    req = _request(dr=6, max_dr=5, uplink_history=_history(range(10)))
    resp = handle(req)
    assert (resp.dr, resp.tx_power_index) == (5, 0)


def test_loss_threshold_differs_from_step_threshold():
    # 10 enregistrements : pertes estimées mais pas d'ajustement DR/puissance
    fcnts = [0, 1, 2, 3, 4, 5, 6, 7, 8, 11]
    req = _request(uplink_history=_history(fcnts, snr=40.0))
    resp = handle(req)
    assert resp.nb_trans == 2
    assert (resp.dr, resp.tx_power_index) == (2, 0)


def test_step_walk_starts_from_clamped_dr():
    req = _request(dr=9, max_dr=5, uplink_history=_history(range(11)))
    resp = handle(req)
    # DR déjà au max : les 4 pas vont à la puissance, bornée à 3
    assert resp == AdrResponse(dr=5, tx_power_index=3, nb_trans=1)


def test_no_matching_power_index_skips_step_adjustment(caplog):
    req = _request(tx_power_index=0, uplink_history=_history(range(11), tx_power_index=2))
    with caplog.at_level(logging.DEBUG, logger="labscim_adr.adr"):
        resp = handle(req)
    assert (resp.dr, resp.tx_power_index) == (2, 0)
    assert "skipped" in caplog.text


def test_mean_snr_only_uses_matching_records():
    history = (
        UplinkRecord(0, 10.0, 1),
        UplinkRecord(1, 2.0, 0),
        UplinkRecord(2, 20.0, 1),
    )
    assert mean_snr(history, 1) == pytest.approx(15.0)
    with pytest.raises(InsufficientMatchingHistory):
        mean_snr(history, 4)


def test_packet_loss_below_threshold_is_zero():
    assert packet_loss_percentage(_history([0, 1, 3])) == 0.0


def test_packet_loss_percentage():
    fcnts = [0, 1, 2, 3, 4, 5, 6, 7, 8, 11]
    assert packet_loss_percentage(_history(fcnts)) == pytest.approx(20.0)


def test_packet_loss_ignores_frame_counter_regression(caplog):
    fcnts = [100, 101, 102, 103, 104, 0, 1, 2, 3, 4]
    with caplog.at_level(logging.WARNING, logger="labscim_adr.adr"):
        loss = packet_loss_percentage(_history(fcnts))
    assert loss == 0.0
    assert "regression" in caplog.text


@pytest.mark.parametrize(
    "nb_trans, loss, expected",
    [
        (1, 0.0, 1), (2, 4.9, 1), (3, 0.0, 2),
        (1, 5.0, 1), (2, 9.9, 2), (3, 5.0, 3),
        (1, 10.0, 2), (2, 29.9, 3), (3, 10.0, 3),
        (1, 30.0, 3), (2, 80.0, 3), (3, 100.0, 3),
        (0, 0.0, 1), (7, 0.0, 2),
    ],
)
def test_nb_trans_table(nb_trans, loss, expected):
    assert get_nb_trans(nb_trans, loss) == expected


@pytest.mark.parametrize("margin, expected", [(13.0, 4), (-2.0, 0), (-3.0, -1), (2.9, 0), (-7.0, -2)])
def test_steps_truncate_toward_zero(margin, expected):
    assert steps_from_margin(margin) == expected


def test_step_walk_consumes_blocked_steps():
    assert ideal_tx_power_index_and_dr(10, 0, 4, 2, 5) == (2, 5)
    assert ideal_tx_power_index_and_dr(-5, 2, 3, 7, 5) == (0, 3)
    assert ideal_tx_power_index_and_dr(0, 1, 1, 7, 5) == (1, 1)


@pytest.mark.parametrize("dr", [0, 3, 5, 8])
@pytest.mark.parametrize("snr", [-30.0, 5.0, 60.0])
@pytest.mark.parametrize("nb_trans", [0, 1, 3, 5])
def test_response_bounds(dr, snr, nb_trans):
    fcnts = [0, 2, 4, 5, 6, 7, 9, 10, 11, 12, 20, 21]
    req = _request(dr=dr, nb_trans=nb_trans, uplink_history=_history(fcnts, snr=snr))
    resp = handle(req)
    assert resp.dr <= req.max_dr
    assert resp.nb_trans in (1, 2, 3)
    assert 0 <= resp.tx_power_index <= req.max_tx_power_index
    assert handle(req) == resp
