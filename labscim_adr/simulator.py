import heapq
import logging

import numpy as np

try:
    import pandas as pd
except ImportError:  # pragma: no cover - pandas optional
    pd = None

from .adr import max_snr
from .channel import Channel
from .lorawan import DR_TO_SF, TX_POWER_INDEX_TO_DBM
from .node import Node
from .registry import DEFAULT_HANDLER_ID
from .server import MARGIN_DB, NetworkServer

logger = logging.getLogger(__name__)

# Priorités des événements dans la file
EVENT_UPLINK = 1
EVENT_RX_WINDOW = 3


class Gateway:
    """Passerelle unique placée au centre de l'aire."""

    def __init__(self, gateway_id: int, x: float, y: float):
        self.id = gateway_id
        self.x = x
        self.y = y


class Simulator:
    """Simule des équipements LoRaWAN pilotés par l'ADR du serveur réseau."""

    def __init__(self, num_nodes: int = 10, area_size: float = 1000.0,
                 packet_interval: float = 60.0, packets_to_send: int = 50,
                 adr: bool = True, handler_id: str = DEFAULT_HANDLER_ID,
                 installation_margin: float = MARGIN_DB,
                 channel: Channel | None = None, shadowing_std: float = 6.0,
                 initial_dr: int = 0, initial_tx_power_index: int = 0,
                 initial_nb_trans: int = 1, loss_probability: float = 0.0,
                 payload_size: int = 20, seed: int | None = None):
        """
        Initialise la simulation.
        :param num_nodes: Nombre de nœuds à simuler.
        :param area_size: Côté de l'aire carrée (mètres).
        :param packet_interval: Période d'émission de chaque nœud (s).
        :param packets_to_send: Nombre d'uplinks émis par chaque nœud.
        :param adr: Bit ADR des nœuds (et activation de l'ADR serveur).
        :param handler_id: Algorithme ADR du registre utilisé par le serveur.
        :param installation_margin: Marge d'installation (dB).
        :param channel: Canal radio ; par défaut un ``Channel`` avec ``shadowing_std``.
        :param initial_dr: DR de départ des nœuds.
        :param initial_tx_power_index: Index de puissance de départ.
        :param initial_nb_trans: NbTrans de départ.
        :param loss_probability: Probabilité de perte indépendante du SNR
            (interférences), appliquée à chaque émission.
        :param seed: Graine du générateur numpy.
        """
        if num_nodes < 1:
            raise ValueError("nodes must be >= 1")
        if packets_to_send < 1:
            raise ValueError("packets_to_send must be >= 1")
        if packet_interval <= 0:
            raise ValueError("packet_interval must be > 0")
        if not 0.0 <= loss_probability < 1.0:
            raise ValueError("loss_probability must be in [0, 1)")
        if initial_dr not in DR_TO_SF:
            raise ValueError(f"invalid initial DR {initial_dr}")
        if initial_tx_power_index not in TX_POWER_INDEX_TO_DBM:
            raise ValueError(f"invalid initial TX power index {initial_tx_power_index}")

        self.num_nodes = num_nodes
        self.area_size = area_size
        self.packet_interval = packet_interval
        self.packets_to_send = packets_to_send
        self.loss_probability = loss_probability
        self.payload_size = payload_size
        self.rng = np.random.default_rng(seed)
        self.channel = channel if channel is not None else Channel(shadowing_std=shadowing_std, rng=self.rng)

        self.network_server = NetworkServer(
            handler_id=handler_id,
            installation_margin=installation_margin,
            adr_enabled=adr,
        )
        self.gateway = Gateway(0, area_size / 2.0, area_size / 2.0)

        self.nodes = []
        for node_id in range(num_nodes):
            x, y = (float(v) for v in self.rng.random(2) * area_size)
            node = Node(node_id, x, y, dr=initial_dr, tx_power_index=initial_tx_power_index,
                        nb_trans=initial_nb_trans, channel=self.channel, adr=adr)
            self.nodes.append(node)
        self.network_server.nodes = self.nodes

        # File d'événements (min-heap)
        self.event_queue: list[tuple[float, int, int, Node]] = []
        self.current_time = 0.0
        self.event_id_counter = 0

        # Statistiques cumulatives
        self.packets_sent = 0
        self.packets_delivered = 0
        self.transmissions = 0
        self.total_energy_J = 0.0
        self.events_log: list[dict] = []

        # Premier envoi de chaque nœud : délai uniforme dans [0, période]
        for node in self.nodes:
            self.schedule_event(node, float(self.rng.random()) * self.packet_interval)

        self.running = True

    def _next_event_id(self) -> int:
        event_id = self.event_id_counter
        self.event_id_counter += 1
        return event_id

    def schedule_event(self, node: Node, time: float, priority: int = EVENT_UPLINK):
        """Planifie un événement pour un nœud à l'instant donné."""
        event_id = self._next_event_id()
        heapq.heappush(self.event_queue, (time, priority, event_id, node))
        logger.debug(f"Scheduled event {event_id} (priority {priority}) for node {node.id} at t={time:.2f}s")

    def step(self) -> bool:
        """Exécute le prochain événement planifié. Retourne False si plus d'événement à traiter."""
        if not self.running or not self.event_queue:
            return False
        time, priority, event_id, node = heapq.heappop(self.event_queue)
        self.current_time = time

        if priority == EVENT_UPLINK:
            self._transmit(node, event_id, time)
        elif priority == EVENT_RX_WINDOW:
            frame = self.network_server.pop_downlink(node.id)
            if frame is not None:
                node.handle_downlink(frame)
        return True

    def _transmit(self, node: Node, event_id: int, time: float):
        dr, tx_power_index, nb_trans = node.dr, node.tx_power_index, node.nb_trans
        frame = node.prepare_uplink(bytes(self.payload_size))
        self.packets_sent += 1
        duration = self.channel.airtime(node.sf, self.payload_size)
        distance = node.distance_to(self.gateway)

        best_snr = None
        end_time = time
        # Chaque uplink est émis NbTrans fois avec le même FCnt
        for _ in range(nb_trans):
            end_time += duration
            self.transmissions += 1
            node.transmissions += 1
            # E = P(mW) * t
            energy_J = (10 ** (node.tx_power / 10.0) / 1000.0) * duration
            self.total_energy_J += energy_J
            node.add_energy(energy_J)

            _, snr = self.channel.compute_rssi(node.tx_power, distance)
            if not self.channel.can_demodulate(node.sf, snr):
                continue
            if self.loss_probability and self.rng.random() < self.loss_probability:
                continue
            if best_snr is None or snr > best_snr:
                best_snr = snr
            self.network_server.receive(event_id, node.id, frame.fcnt, snr, tx_power_index)

        delivered = best_snr is not None
        if delivered:
            self.packets_delivered += 1
            node.packets_success += 1

        self.events_log.append({
            'event_id': event_id,
            'node_id': node.id,
            'fcnt': frame.fcnt,
            'dr': dr,
            'sf': DR_TO_SF[dr],
            'tx_power_index': tx_power_index,
            'nb_trans': nb_trans,
            'start_time': time,
            'end_time': end_time,
            'snr_dB': best_snr,
            'result': 'Success' if delivered else 'Lost',
        })

        rx1, _ = node.schedule_receive_windows(end_time)
        self.schedule_event(node, rx1, EVENT_RX_WINDOW)
        if node.packets_sent < self.packets_to_send:
            self.schedule_event(node, time + self.packet_interval)

    def run(self, max_steps: int | None = None):
        """Exécute la simulation jusqu'à épuisement des événements ou jusqu'à ``max_steps``."""
        step_count = 0
        while self.event_queue and self.running:
            self.step()
            step_count += 1
            if max_steps and step_count >= max_steps:
                break

    def stop(self):
        self.running = False

    def get_metrics(self) -> dict:
        """Retourne un dictionnaire des métriques actuelles de la simulation."""
        total_sent = self.packets_sent
        pdr = self.packets_delivered / total_sent if total_sent > 0 else 0.0
        snrs = np.array([e['snr_dB'] for e in self.events_log if e['snr_dB'] is not None], dtype=float)
        best_snr_by_node = {
            node.id: max_snr(self.network_server.history(node.id)) for node in self.nodes
        }
        return {
            'PDR': pdr,
            'packets_sent': total_sent,
            'transmissions': self.transmissions,
            'energy_J': self.total_energy_J,
            'mean_snr_dB': float(snrs.mean()) if snrs.size else None,
            'adr_commands': self.network_server.adr_commands_sent,
            'dr_distribution': {dr: sum(1 for n in self.nodes if n.dr == dr) for dr in DR_TO_SF},
            'tx_power_distribution': {
                idx: sum(1 for n in self.nodes if n.tx_power_index == idx) for idx in TX_POWER_INDEX_TO_DBM
            },
            'avg_nb_trans': float(np.mean([n.nb_trans for n in self.nodes])),
            'pdr_by_node': {node.id: node.pdr for node in self.nodes},
            'best_snr_by_node': best_snr_by_node,
        }

    def get_events_dataframe(self) -> 'pd.DataFrame':
        """
        Retourne un DataFrame pandas contenant le log des uplinks enrichi de
        l'état final des nœuds.
        """
        if pd is None:
            raise RuntimeError("pandas is required for this feature")
        if not self.events_log:
            return pd.DataFrame()
        df = pd.DataFrame(self.events_log)
        nodes_df = pd.DataFrame([node.to_dict() for node in self.nodes])
        return df.merge(nodes_df, on='node_id', how='left')
