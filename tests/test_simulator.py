import csv
import sys
from pathlib import Path

import pytest

# Allow importing the package from the repository root
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from labscim_adr.channel import Channel  # noqa: E402
from labscim_adr.lorawan import MAX_DR, MAX_TX_POWER_INDEX  # noqa: E402
from labscim_adr.run import main  # noqa: E402
from labscim_adr.simulator import Simulator  # noqa: E402


def _make_sim(num_nodes: int = 1, packets: int = 15, adr: bool = True, **kwargs) -> Simulator:
    sim = Simulator(
        num_nodes=num_nodes,
        area_size=100.0,
        packet_interval=60.0,
        packets_to_send=packets,
        adr=adr,
        channel=Channel(shadowing_std=0),
        seed=1,
        **kwargs,
    )
    # Nœuds au pied de la passerelle : marge très confortable
    for n in sim.nodes:
        n.x = sim.gateway.x
        n.y = sim.gateway.y
    return sim


def test_invalid_parameters():
    with pytest.raises(ValueError):
        Simulator(num_nodes=0)
    with pytest.raises(ValueError):
        Simulator(loss_probability=1.0)
    with pytest.raises(ValueError):
        Simulator(initial_dr=9)


def test_adr_converges_to_fastest_rate_and_lowest_power():
    sim = _make_sim()
    sim.run()
    node = sim.nodes[0]
    assert sim.packets_sent == 15
    assert sim.packets_delivered == 15
    assert node.dr == MAX_DR
    assert node.tx_power_index == MAX_TX_POWER_INDEX
    assert node.adr_commands_applied == 1
    # le 12e uplink part déjà avec la nouvelle configuration
    assert sim.events_log[11]['dr'] == MAX_DR


def test_adr_disabled_keeps_configuration():
    sim = _make_sim(adr=False)
    sim.run()
    node = sim.nodes[0]
    assert (node.dr, node.tx_power_index, node.nb_trans) == (0, 0, 1)
    assert sim.get_metrics()['adr_commands'] == 0


def test_lossy_link_increases_nb_trans():
    sim = _make_sim(packets=40, loss_probability=0.5)
    sim.run()
    assert max(e['nb_trans'] for e in sim.events_log) > 1
    assert sim.transmissions > sim.packets_sent


def test_run_and_step_equivalence():
    sim_run = _make_sim(num_nodes=3, loss_probability=0.2)
    sim_run.run()
    metrics_run = sim_run.get_metrics()

    sim_step = _make_sim(num_nodes=3, loss_probability=0.2)
    while sim_step.step():
        pass
    metrics_step = sim_step.get_metrics()

    for key in ["PDR", "transmissions", "energy_J", "adr_commands", "avg_nb_trans"]:
        assert metrics_run[key] == pytest.approx(metrics_step[key])


def test_metrics_content():
    sim = _make_sim(num_nodes=2)
    sim.run()
    metrics = sim.get_metrics()
    assert metrics['PDR'] == pytest.approx(1.0)
    assert sum(metrics['dr_distribution'].values()) == 2
    assert metrics['best_snr_by_node'][0] is not None
    assert metrics['energy_J'] > 0


def test_get_events_dataframe_has_all_columns():
    pytest.importorskip("pandas")
    sim = _make_sim()
    sim.run()
    df = sim.get_events_dataframe()
    assert len(df) == 15
    for col in ["event_id", "node_id", "fcnt", "dr", "sf", "tx_power_index", "nb_trans",
                "snr_dB", "result", "final_dr", "final_tx_power_index", "energy_consumed_J"]:
        assert col in df.columns


def test_cli_list_handlers(caplog):
    caplog.set_level("INFO")
    assert main(["--list-handlers"]) == 0
    assert "labscimadr" in caplog.text


def test_cli_unknown_handler():
    assert main(["--handler", "nope"]) == 2


def test_cli_writes_csv(tmp_path):
    out = tmp_path / "nodes.csv"
    assert main(["--nodes", "2", "--packets", "3", "--seed", "1", "--output", str(out)]) == 0
    with open(out, newline="") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 2
    assert "final_dr" in rows[0]
