"""Tests for the plasticnet-sim command-line driver."""

import pytest
import yaml

from plasticnet.simulation.run import build_parser, load_config, main


def _small(tmp_path, *extra):
    return ["--dir", str(tmp_path), "--simtime", "0.02", "--nbinputs", "20",
            "--size", "6", "--ipre", "19", "--ipost", "5", *extra]


class TestParser:
    def test_overrides(self):
        args = build_parser().parse_args(
            ["--simtime", "2.5", "--with_stdp", "yes", "--nomon", "0"])
        config = load_config(args)
        assert config.simtime == 2.5
        assert config.with_stdp is True
        assert config.nomon is False

    def test_yaml_then_cli(self, tmp_path):
        path = tmp_path / "run.yaml"
        path.write_text(yaml.dump({"seed": 7, "kappa": 10.0}))
        config = load_config(build_parser().parse_args(
            ["--config", str(path), "--kappa", "30"]))
        assert config.seed == 7
        assert config.kappa == 30.0

    def test_sparseness_overrides_yaml_npostsyn(self, tmp_path):
        path = tmp_path / "run.yaml"
        path.write_text(yaml.dump({"npostsyn": 30}))
        config = load_config(build_parser().parse_args(
            ["--config", str(path), "--sparseness", "0.2"]))
        assert config.effective_sparseness == 0.2

    def test_tau_pre_drives_presynaptic_trace(self, tmp_path):
        config = load_config(build_parser().parse_args(["--tau_pre", "0.015"]))
        assert config.tau_zi == 0.015
        config = load_config(build_parser().parse_args(
            ["--tau_pre", "0.015", "--tau_z_pr", "0.025"]))
        assert config.tau_zi == 0.025

        path = tmp_path / "run.yaml"
        config.to_yaml(path)
        reloaded = load_config(build_parser().parse_args(
            ["--config", str(path), "--tau_pre", "0.03"]))
        assert reloaded.tau_zi == 0.025

    @pytest.mark.parametrize("ranks", ["0", "-2"])
    def test_rank_count_must_be_positive(self, ranks):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--ranks", ranks])

    def test_bad_boolean(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--nomon", "maybe"])

    def test_ranks_and_mpi_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--ranks", "2", "--mpi"])


class TestMain:
    def test_serial_run(self, tmp_path):
        assert main(_small(tmp_path)) == 0
        assert (tmp_path / "sim_bcpnn.0.log").exists()
        assert (tmp_path / "sim_bcpnn.0.zi").exists()
        log = (tmp_path / "sim_bcpnn.0.log").read_text()
        assert "Execution time" in log
        assert "Freeing" in log

    def test_thread_ranks(self, tmp_path):
        assert main(_small(tmp_path, "--ranks", "2", "--with_stdp", "1")) == 0
        assert (tmp_path / "sim_bcpnn.0.log").exists()
        assert (tmp_path / "sim_bcpnn.1.log").exists()
        # ipre=19 lives on rank 1 of 2
        assert (tmp_path / "sim_bcpnn.1.zi").exists()
        assert not (tmp_path / "sim_bcpnn.0.zi").exists()

    @pytest.mark.parametrize("ranks", ["1", "2"])
    def test_ipre_out_of_range(self, tmp_path, ranks):
        argv = _small(tmp_path, "--ranks", ranks)
        argv[argv.index("--ipre") + 1] = "20"
        assert main(argv) == 4711

    def test_ipost_out_of_range(self, tmp_path):
        argv = _small(tmp_path, "--nomon", "1")
        argv[argv.index("--ipost") + 1] = "6"
        assert main(argv) == 4712

    def test_npostsyn_too_large(self, tmp_path):
        assert main(_small(tmp_path, "--npostsyn", "30")) == 4713

    def test_bad_configuration(self, tmp_path):
        assert main(_small(tmp_path, "--sparseness", "0")) == 2
        assert main(["--config", str(tmp_path / "absent.yaml")]) == 2

    def test_unwritable_output_dir(self, tmp_path, capsys):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        argv = _small(tmp_path)
        argv[argv.index("--dir") + 1] = str(blocker / "out")
        assert main(argv) == 1
        out = capsys.readouterr().out
        assert "ERROR" in out
        assert "Cannot write run output" in out

    def test_unwritable_output_dir_thread_ranks(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        argv = _small(tmp_path, "--ranks", "2")
        argv[argv.index("--dir") + 1] = str(blocker / "out")
        assert main(argv) == 1
