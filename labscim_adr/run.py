import argparse
import csv
import logging

from . import registry
from .server import MARGIN_DB
from .simulator import Simulator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="LabSCim ADR – simulation LoRaWAN en mode CLI")
    parser.add_argument("--nodes", type=int, default=10, help="Nombre de nœuds")
    parser.add_argument(
        "--area", type=float, default=2000.0, help="Taille de l'aire de simulation (côté du carré, m)"
    )
    parser.add_argument(
        "--packets", type=int, default=50, help="Nombre d'uplinks émis par nœud"
    )
    parser.add_argument(
        "--interval", type=float, default=60.0, help="Période d'émission (s)"
    )
    parser.add_argument(
        "--adr",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Active l'ADR (bit ADR des nœuds et décisions serveur)",
    )
    parser.add_argument(
        "--handler",
        default=registry.DEFAULT_HANDLER_ID,
        help="Identifiant de l'algorithme ADR (voir --list-handlers)",
    )
    parser.add_argument(
        "--margin", type=float, default=MARGIN_DB, help="Marge d'installation (dB)"
    )
    parser.add_argument(
        "--shadowing", type=float, default=6.0, help="Écart-type du shadowing (dB)"
    )
    parser.add_argument(
        "--loss", type=float, default=0.0, help="Probabilité de perte par émission"
    )
    parser.add_argument("--seed", type=int, help="Graine aléatoire")
    parser.add_argument(
        "--output", type=str, help="Fichier CSV pour sauvegarder l'état final des nœuds (optionnel)"
    )
    parser.add_argument(
        "--list-handlers", action="store_true", help="Affiche les algorithmes ADR disponibles"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Journalisation détaillée")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO, format="%(message)s"
    )

    if args.list_handlers:
        for handler_id, name in registry.available():
            logging.info(f"{handler_id}: {name}")
        return 0

    try:
        sim = Simulator(
            num_nodes=args.nodes,
            area_size=args.area,
            packet_interval=args.interval,
            packets_to_send=args.packets,
            adr=args.adr,
            handler_id=args.handler,
            installation_margin=args.margin,
            shadowing_std=args.shadowing,
            loss_probability=args.loss,
            seed=args.seed,
        )
    except (KeyError, ValueError) as exc:
        logging.error(f"Configuration invalide : {exc}")
        return 2

    logging.info(
        f"Simulation LoRaWAN : {args.nodes} nœuds, aire={args.area}m, "
        f"{args.packets} paquets/nœud, ADR={'on' if args.adr else 'off'} ({args.handler})"
    )
    sim.run()
    metrics = sim.get_metrics()
    logging.info(
        f"Résultats : PDR={metrics['PDR'] * 100:.2f}%, émissions={metrics['transmissions']}, "
        f"énergie={metrics['energy_J']:.3f} J, commandes ADR={metrics['adr_commands']}, "
        f"NbTrans moyen={metrics['avg_nb_trans']:.2f}"
    )
    logging.info(f"Répartition DR : {metrics['dr_distribution']}")

    if args.output:
        rows = [node.to_dict() for node in sim.nodes]
        with open(args.output, mode="w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=list(rows[0]))
            writer.writeheader()
            writer.writerows(rows)
        logging.info(f"Résultats enregistrés dans {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
