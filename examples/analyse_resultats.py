#!/usr/bin/env python3
"""Analyse simple des fichiers CSV générés par ``labscim-adr --output``."""
import sys
try:
    import pandas as pd
    import matplotlib.pyplot as plt
except ImportError as exc:  # pragma: no cover - optional dependencies
    missing = "pandas" if "pandas" in str(exc) else "matplotlib"
    print(
        f"Le module '{missing}' est requis pour exécuter ce script. "
        "Installez les dépendances via 'pip install -e .[analysis]'."
    )
    raise SystemExit(1)

if len(sys.argv) < 2:
    print("Usage: python analyse_resultats.py fichier1.csv [fichier2.csv ...]")
    sys.exit(1)

dfs = [pd.read_csv(f) for f in sys.argv[1:]]
results = pd.concat(dfs, ignore_index=True)

results['PDR(%)'] = results['packets_success'] / results['packets_sent'] * 100
results['energy_consumed_J'] = results['energy_consumed_J'].astype(float)

print(results)
print(f"PDR moyen: {results['PDR(%)'].mean():.2f}%")
print(f"NbTrans moyen: {results['final_nb_trans'].mean():.2f}")

fig, (ax_dr, ax_pw) = plt.subplots(1, 2, figsize=(10, 4))
results['final_dr'].value_counts().sort_index().plot(kind='bar', ax=ax_dr)
ax_dr.set_xlabel('DR final')
ax_dr.set_ylabel('Nombre de nœuds')
results['final_tx_power_index'].value_counts().sort_index().plot(kind='bar', ax=ax_pw)
ax_pw.set_xlabel('Index de puissance final')
fig.suptitle("Configuration radio après ADR")
fig.tight_layout()
fig.savefig('adr_par_noeud.png')
print("Graphique enregistré dans adr_par_noeud.png")
