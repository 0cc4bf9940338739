from dataclasses import dataclass


@dataclass
class LoRaWANFrame:
    """Minimal representation of a LoRaWAN MAC frame."""
    mhdr: int
    fctrl: int
    fcnt: int
    payload: bytes
    confirmed: bool = False


# ---------------------------------------------------------------------------
# Paramètres régionaux EU868 utilisés par l'ADR
# ---------------------------------------------------------------------------

DR_TO_SF = {0: 12, 1: 11, 2: 10, 3: 9, 4: 8, 5: 7}
MAX_DR = max(DR_TO_SF)

# Index 0 = EIRP max (16 dBm), puis -2 dB par index
TX_POWER_INDEX_TO_DBM = {idx: 16.0 - 2.0 * idx for idx in range(8)}
MAX_TX_POWER_INDEX = max(TX_POWER_INDEX_TO_DBM)

# SNR de démodulation requis par SF (dB)
REQUIRED_SNR_BY_SF = {7: -7.5, 8: -10.0, 9: -12.5, 10: -15.0, 11: -17.5, 12: -20.0}
REQUIRED_SNR = {dr: REQUIRED_SNR_BY_SF[sf] for dr, sf in DR_TO_SF.items()}

LINK_ADR_CID = 0x03


@dataclass
class LinkADRReq:
    datarate: int
    tx_power: int
    chmask: int = 0xFFFF
    redundancy: int = 0

    @property
    def nb_trans(self) -> int:
        """NbTrans carried in the low nibble of the redundancy byte."""
        return self.redundancy & 0x0F

    @classmethod
    def build(cls, datarate: int, tx_power: int, nb_trans: int, chmask: int = 0xFFFF) -> "LinkADRReq":
        if not 0 <= nb_trans <= 15:
            raise ValueError(f"NbTrans out of range: {nb_trans}")
        return cls(datarate, tx_power, chmask, nb_trans & 0x0F)

    def to_bytes(self) -> bytes:
        dr_tx = ((self.datarate & 0x0F) << 4) | (self.tx_power & 0x0F)
        return bytes([LINK_ADR_CID, dr_tx]) + self.chmask.to_bytes(2, "little") + bytes([
            self.redundancy
        ])

    @staticmethod
    def from_bytes(data: bytes) -> "LinkADRReq":
        if len(data) < 5 or data[0] != LINK_ADR_CID:
            raise ValueError("Invalid LinkADRReq")
        dr_tx = data[1]
        datarate = (dr_tx >> 4) & 0x0F
        tx_power = dr_tx & 0x0F
        chmask = int.from_bytes(data[2:4], "little")
        redundancy = data[4]
        return LinkADRReq(datarate, tx_power, chmask, redundancy)


@dataclass
class LinkADRAns:
    """Bits: 0 = channel mask ACK, 1 = data rate ACK, 2 = power ACK."""
    status: int = 0b111

    @property
    def accepted(self) -> bool:
        return self.status & 0b111 == 0b111

    def to_bytes(self) -> bytes:
        return bytes([LINK_ADR_CID, self.status])

    @staticmethod
    def from_bytes(data: bytes) -> "LinkADRAns":
        if len(data) < 2 or data[0] != LINK_ADR_CID:
            raise ValueError("Invalid LinkADRAns")
        return LinkADRAns(data[1])


def compute_rx1(end_time: float) -> float:
    """Return the opening time of RX1 window after an uplink."""
    return end_time + 1.0


def compute_rx2(end_time: float) -> float:
    """Return the opening time of RX2 window after an uplink."""
    return end_time + 2.0
