# node.py
import logging
import math

from .lorawan import (
    DR_TO_SF,
    LinkADRAns,
    LinkADRReq,
    LoRaWANFrame,
    LINK_ADR_CID,
    TX_POWER_INDEX_TO_DBM,
    compute_rx1,
    compute_rx2,
)

logger = logging.getLogger(__name__)


class Node:
    """
    Représente un équipement LoRaWAN (classe A) dont la configuration radio est
    pilotée par l'ADR du serveur réseau.

    Attributs :
        id (int) : Identifiant unique du nœud.
        x (float), y (float) : Position du nœud (mètres).
        dr (int) : Data rate courant (0 = SF12 … 5 = SF7).
        tx_power_index (int) : Index de puissance TX courant (0 = puissance max).
        nb_trans (int) : Nombre d'émissions de chaque uplink (1 à 3).
        adr (bool) : Bit ADR positionné dans les uplinks.
        fcnt_up (int) : Compteur de trames montantes.
        packets_sent (int) : Nombre d'uplinks applicatifs émis.
        transmissions (int) : Nombre d'émissions radio, répétitions NbTrans incluses.
        packets_success (int) : Nombre d'uplinks reçus par le serveur.
        energy_consumed (float) : Énergie totale consommée en transmission (Joules).
    """

    def __init__(self, node_id: int, x: float, y: float, dr: int = 0,
                 tx_power_index: int = 0, nb_trans: int = 1, channel=None,
                 adr: bool = True):
        """
        Initialise le nœud avec ses paramètres de départ.

        :param node_id: Identifiant du nœud.
        :param x: Position X (mètres).
        :param y: Position Y (mètres).
        :param dr: Data rate initial.
        :param tx_power_index: Index de puissance initial.
        :param nb_trans: NbTrans initial.
        """
        self.id = node_id
        self.x = x
        self.y = y
        self.initial_dr = dr
        self.dr = dr
        self.initial_tx_power_index = tx_power_index
        self.tx_power_index = tx_power_index
        self.nb_trans = nb_trans
        self.adr = adr
        self.channel = channel

        self.energy_consumed = 0.0
        self.packets_sent = 0
        self.transmissions = 0
        self.packets_success = 0

        # LoRaWAN specific parameters
        self.fcnt_up = 0
        self.fcnt_down = 0
        self.pending_mac_cmd = None
        self.adr_commands_applied = 0

    @property
    def sf(self) -> int:
        return DR_TO_SF[self.dr]

    @property
    def tx_power(self) -> float:
        """Puissance TX courante en dBm."""
        return TX_POWER_INDEX_TO_DBM[self.tx_power_index]

    def distance_to(self, other) -> float:
        """Distance euclidienne (mètres) vers un objet possédant x et y."""
        return math.hypot(self.x - other.x, self.y - other.y)

    def __repr__(self):
        return (f"Node(id={self.id}, pos=({self.x:.1f},{self.y:.1f}), "
                f"DR={self.dr}, TXPower={self.tx_power_index}, NbTrans={self.nb_trans})")

    def to_dict(self) -> dict:
        """Données finales du nœud, prêtes pour l'export en DataFrame/CSV."""
        return {
            'node_id': self.id,
            'x': self.x,
            'y': self.y,
            'initial_dr': self.initial_dr,
            'final_dr': self.dr,
            'initial_tx_power_index': self.initial_tx_power_index,
            'final_tx_power_index': self.tx_power_index,
            'final_nb_trans': self.nb_trans,
            'energy_consumed_J': self.energy_consumed,
            'packets_sent': self.packets_sent,
            'transmissions': self.transmissions,
            'packets_success': self.packets_success,
            'adr_commands_applied': self.adr_commands_applied,
        }

    @property
    def pdr(self) -> float:
        """Retourne le PDR global de ce nœud."""
        return self.packets_success / self.packets_sent if self.packets_sent > 0 else 0.0

    def add_energy(self, energy_joules: float):
        self.energy_consumed += energy_joules

    # ------------------------------------------------------------------
    # LoRaWAN helper methods
    # ------------------------------------------------------------------
    def prepare_uplink(self, payload: bytes, confirmed: bool = False) -> LoRaWANFrame:
        """Build an uplink LoRaWAN frame and increment the counter."""
        if self.pending_mac_cmd:
            payload = self.pending_mac_cmd + payload
            self.pending_mac_cmd = None

        mhdr = 0x40 if not confirmed else 0x80
        fctrl = 0x80 if self.adr else 0
        frame = LoRaWANFrame(
            mhdr=mhdr, fctrl=fctrl, fcnt=self.fcnt_up, payload=payload, confirmed=confirmed
        )
        self.fcnt_up += 1
        self.packets_sent += 1
        return frame

    def handle_downlink(self, frame: LoRaWANFrame):
        """Process a received downlink frame (only LinkADRReq is understood)."""
        self.fcnt_down = frame.fcnt + 1
        if not frame.payload or frame.payload[0] != LINK_ADR_CID:
            return
        try:
            req = LinkADRReq.from_bytes(frame.payload[:5])
        except ValueError as exc:
            logger.error(f"Node {self.id}: malformed LinkADRReq ignored ({exc})")
            return

        status = 0b001
        if req.datarate in DR_TO_SF:
            status |= 0b010
        if req.tx_power in TX_POWER_INDEX_TO_DBM:
            status |= 0b100
        ans = LinkADRAns(status)
        if ans.accepted:
            self.dr = req.datarate
            self.tx_power_index = req.tx_power
            if req.nb_trans:
                self.nb_trans = req.nb_trans
            self.adr_commands_applied += 1
            logger.debug(f"Node {self.id}: LinkADRReq applied -> {self!r}")
        else:
            logger.debug(f"Node {self.id}: LinkADRReq rejected (status={status:03b})")
        self.pending_mac_cmd = ans.to_bytes()

    def schedule_receive_windows(self, end_time: float):
        """Return RX1 and RX2 times for the last uplink."""
        return compute_rx1(end_time), compute_rx2(end_time)
