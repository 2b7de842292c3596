import os

import matplotlib
matplotlib.use('Agg')  # no GUI on bench machines
import matplotlib.pyplot as plt


def plot_phase_samples(phase, samples, directory):
    """Save the P and Q sample series of one phase as PNG; return the file path."""
    if not samples:
        return None
    os.makedirs(directory, exist_ok=True)
    index = list(range(1, len(samples) + 1))
    accepted = samples[-1]

    fig, (ax_p, ax_q) = plt.subplots(2, 1, figsize=(10, 7), sharex=True)
    ax_p.plot(index, [s.active_power for s in samples], 'b.-', label='P (uW)')
    ax_p.axhline(accepted.active_power, color='green', linestyle='--', alpha=0.7, label='accepted')
    ax_q.plot(index, [s.reactive_power for s in samples], 'r.-', label='Q (uvar)')
    ax_q.axhline(accepted.reactive_power, color='green', linestyle='--', alpha=0.7, label='accepted')

    ax_p.set_title(f'Reference samples, phase L{phase}', fontsize=14, fontweight='bold')
    ax_q.set_xlabel('Sample')
    for ax in (ax_p, ax_q):
        ax.grid(True, alpha=0.3)
        ax.legend(fontsize=10)
    fig.tight_layout()

    filepath = os.path.join(directory, f'phase_L{phase}_samples.png')
    fig.savefig(filepath, dpi=150, bbox_inches='tight')
    plt.close(fig)
    return filepath
