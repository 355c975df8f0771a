import json
import os
import sys
from pathlib import Path

# Ensure src is on sys.path for module imports
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / 'src'
assert SRC.exists(), f"Source path not found: {SRC}"
sys.path.insert(0, str(SRC))

from pointing.sim import run_closed_loop, main  # type: ignore
from pointing.store import validate_sample_log  # type: ignore


def test_sim_closed_loop_no_noise_is_exact(tmp_path):
    out_dir = str(tmp_path / 'sim_out')

    out = run_closed_loop(trials=20, noise_m=0.0, calibration_samples=2, seed=0, out_dir=out_dir)

    for k in ('accuracy', 'classifications', 'confirmations', 'corrections', 'no_hits', 'sample_log', 'eval_json'):
        assert k in out, f"missing key {k} in run_closed_loop output"

    assert out['classifications'] == 20
    assert out['confirmations'] == 20
    assert out['corrections'] == 0
    assert out['accuracy'] == 1.0

    assert Path(out['eval_json']).exists()
    evaluation = json.loads(Path(out['eval_json']).read_text())
    # 4 devices x 2 calibration samples, plus one learned sample per trial
    assert evaluation['samples'] == 4 * 2 + 20
    assert evaluation['sample_log_valid']

    assert validate_sample_log(out['sample_log'])['valid']


def test_sim_closed_loop_mild_noise_still_runs(tmp_path):
    out = run_closed_loop(trials=10, noise_m=0.01, seed=1, out_dir=str(tmp_path / 'noise'))

    assert out['classifications'] + out['no_hits'] == 10
    assert out['accuracy'] is None or 0.0 <= out['accuracy'] <= 1.0


def test_sim_cli(tmp_path, capsys):
    out_dir = str(tmp_path / 'cli')

    assert main(['--trials', '3', '--seed', '2', '--out-dir', out_dir]) == 0
    assert 'accuracy: ' in capsys.readouterr().out
    assert os.path.exists(os.path.join(out_dir, 'eval.json'))

    assert main(['--trials', '0']) == 2
    assert main(['--noise', '-1']) == 2
