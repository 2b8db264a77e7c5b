"""Tests for the replicate state machine, reference propagation and selection."""

import json
from pathlib import Path

import pytest

from conftest import summary_text
from pepdock.docking.adcp_wrapper import ClusterMode, PoseEntry, parse_summary
from pepdock.docking.replicates import (
    ControllerState,
    ReplicateController,
    ReplicateResult,
    select_best,
)
from pepdock.exceptions import AmbiguousTieError, ExternalToolFailure, RunCancelled
from pepdock.utils.file_io import read_json
from pepdock.utils.run_dirs import RunLayout

SEARCH = {"replicates": 2, "num_runs": 2, "num_steps": 100, "workers": 1}


def _result(index: int, affinity: float) -> ReplicateResult:
    return ReplicateResult(
        index=index,
        name=f"rep_{index:02d}",
        mode=ClusterMode.RMSD,
        poses=(PoseEntry(rank=1, affinity=affinity),),
        poses_path=Path(f"rep_{index:02d}_out.pdb"),
        top_pose_path=Path(f"rep_{index:02d}_top.pdb"),
        summary_path=Path(f"rep_{index:02d}_summary.dlg"),
    )


def test_select_best_prefers_earlier_on_tie() -> None:
    results = [_result(1, -15.3), _result(2, -15.1), _result(3, -15.3)]
    assert select_best(results).index == 1


def test_select_best_strictly_lower_wins() -> None:
    results = [_result(1, -15.1), _result(2, -15.3), _result(3, -15.2)]
    assert select_best(results).index == 2


def test_select_best_strict_tie_raises() -> None:
    results = [_result(1, -15.3), _result(2, -15.1), _result(3, -15.3)]
    with pytest.raises(AmbiguousTieError) as excinfo:
        select_best(results, strict=True)
    assert excinfo.value.stage == "SelectBest"


def test_select_best_strict_without_tie() -> None:
    results = [_result(1, -15.3), _result(2, -15.1)]
    assert select_best(results, strict=True).index == 1


def test_select_best_needs_results() -> None:
    with pytest.raises(ValueError):
        select_best([])


def _controller(config, cancel=None) -> ReplicateController:
    layout = RunLayout(config.workdir)
    return ReplicateController(config, layout, config.target.target_file, cancel=cancel)


def test_end_to_end_selection(monkeypatch, base_config, fake_dock_factory) -> None:
    fake = fake_dock_factory([
        ([(-15.3, 5.3), (-14.0, 6.0)], False),
        ([(-15.3, 0.1), (-13.9, 1.2)], False),
        ([(-15.6, 1.0), (-15.0, 0.9)], True),
    ])
    monkeypatch.setattr("pepdock.docking.replicates.dock", fake)
    config = base_config(search=SEARCH)
    controller = _controller(config)

    selected = controller.run()

    replicates_dir = config.workdir / "replicates"
    assert controller.state is ControllerState.SELECTED
    assert selected.pose_path == replicates_dir / "rep_03_contact" / "top_pose.pdb"
    assert selected.contact_fraction == 1.0
    assert selected.affinity == pytest.approx(-15.6)
    assert selected.reference_replicate == 1

    # reference propagation: none -> rep 1 top -> winner (rep 1) top in contact mode
    assert fake.calls[0]["reference"] is None
    assert fake.calls[1]["reference"] == replicates_dir / "rep_01" / "top_pose.pdb"
    assert fake.calls[2]["reference"] == replicates_dir / "rep_01" / "top_pose.pdb"
    assert [call["mode"] for call in fake.calls] == [ClusterMode.RMSD, ClusterMode.RMSD, ClusterMode.CONTACT]
    assert fake.calls[2]["contact_cutoff"] == 0.8
    assert fake.calls[0]["name"] == "demo_rep_01"

    top_pose = selected.pose_path.read_text()
    assert "MODEL" not in top_pose
    assert top_pose.rstrip().endswith("END")

    state = read_json(replicates_dir / "state.json")
    assert state["state"] == "Selected"
    assert state["selected"]["replicate"] == 3
    assert [artifact["name"] for artifact in state["artifacts"]] == ["rep_01", "rep_02", "rep_03_contact"]
    sealed = read_json(replicates_dir / "rep_02" / "sealed.json")
    assert sealed["poses"][0]["ref_rmsd"] == pytest.approx(0.1)


def test_seed_reference_used_by_first_replicate(monkeypatch, base_config, fake_dock_factory,
                                                target_file, pose_file) -> None:
    fake = fake_dock_factory([([(-10.0, 1.0)], False), ([(-11.0, 1.0)], False), ([(-11.0, 0.9)], True)])
    monkeypatch.setattr("pepdock.docking.replicates.dock", fake)
    config = base_config(
        target={"name": "demo", "sequence": "GH", "target_file": str(target_file),
                "seed_reference": str(pose_file)},
        search=SEARCH,
    )
    selected = _controller(config).run()
    assert fake.calls[0]["reference"] == pose_file
    assert selected.reference_replicate == 2


def test_resume_reuses_sealed_replicates(monkeypatch, base_config, fake_dock_factory) -> None:
    first = fake_dock_factory([([(-12.0, 1.0)], False), ([(-12.5, 1.0)], False), ([(-12.7, 0.95)], True)])
    monkeypatch.setattr("pepdock.docking.replicates.dock", first)
    selected = _controller(base_config(search=SEARCH)).run()

    second = fake_dock_factory([])
    monkeypatch.setattr("pepdock.docking.replicates.dock", second)
    resumed = _controller(base_config(search={**SEARCH, "resume": True})).run()

    assert second.calls == []
    assert resumed == selected


def test_resume_reruns_replicates_with_stale_reference(monkeypatch, base_config, fake_dock_factory) -> None:
    first = fake_dock_factory([([(-12.0, 1.0)], False), ([(-11.0, 1.0)], False), ([(-12.1, 0.95)], True)])
    monkeypatch.setattr("pepdock.docking.replicates.dock", first)
    config = base_config(search={**SEARCH, "resume": True})
    assert _controller(config).run().reference_replicate == 1

    replicates_dir = config.workdir / "replicates"
    RunLayout.discard(replicates_dir / "rep_01")
    second = fake_dock_factory([([(-10.0, 1.0)], False), ([(-11.0, 1.0)], False), ([(-11.5, 0.9)], True)])
    monkeypatch.setattr("pepdock.docking.replicates.dock", second)
    selected = _controller(config).run()

    assert [call["name"] for call in second.calls] == ["demo_rep_01", "demo_rep_02", "demo_rep_03_contact"]
    assert selected.reference_replicate == 2
    assert selected.affinity == pytest.approx(-11.5)
    contact = read_json(replicates_dir / "rep_03_contact" / "sealed.json")
    assert contact["reference"] == str(replicates_dir / "rep_02" / "top_pose.pdb")


def test_resume_reruns_contact_replicate_for_new_winner(monkeypatch, base_config,
                                                        fake_dock_factory) -> None:
    first = fake_dock_factory([([(-12.0, 1.0)], False), ([(-11.0, 1.0)], False), ([(-12.1, 0.95)], True)])
    monkeypatch.setattr("pepdock.docking.replicates.dock", first)
    config = base_config(search={**SEARCH, "resume": True})
    _controller(config).run()

    # rewrite the sealed rep_02 so that it now wins SelectBest
    replicates_dir = config.workdir / "replicates"
    sealed_path = replicates_dir / "rep_02" / "sealed.json"
    sealed = read_json(sealed_path)
    sealed["poses"][0]["affinity"] = -13.0
    sealed_path.write_text(json.dumps(sealed))

    second = fake_dock_factory([([(-12.9, 0.9)], True)])
    monkeypatch.setattr("pepdock.docking.replicates.dock", second)
    selected = _controller(config).run()

    assert [call["name"] for call in second.calls] == ["demo_rep_03_contact"]
    assert second.calls[0]["reference"] == replicates_dir / "rep_02" / "top_pose.pdb"
    assert selected.reference_replicate == 2


def test_strict_tie_reports_last_sealed(monkeypatch, base_config, fake_dock_factory) -> None:
    fake = fake_dock_factory([([(-15.3, 1.0)], False), ([(-15.3, 0.5)], False)])
    monkeypatch.setattr("pepdock.docking.replicates.dock", fake)
    config = base_config(search={**SEARCH, "strict_ties": True})

    with pytest.raises(AmbiguousTieError) as excinfo:
        _controller(config).run()

    assert excinfo.value.stage == "SelectBest"
    assert excinfo.value.last_sealed == config.workdir / "replicates" / "rep_02" / "sealed.json"
    assert len(fake.calls) == 2


def test_failure_reports_stage_and_last_sealed(monkeypatch, base_config, fake_dock_factory) -> None:
    fake = fake_dock_factory([([(-12.0, 1.0)], False)])

    def failing(*args, **kwargs):
        if fake.calls:
            raise ExternalToolFailure("adcp exited with code 1", returncode=1, stage=args[4])
        return fake(*args, **kwargs)

    monkeypatch.setattr("pepdock.docking.replicates.dock", failing)
    config = base_config(search=SEARCH)
    with pytest.raises(ExternalToolFailure) as excinfo:
        _controller(config).run()

    assert excinfo.value.stage == "demo_rep_02"
    assert excinfo.value.last_sealed == config.workdir / "replicates" / "rep_01" / "sealed.json"
    assert len(fake.calls) == 1


def test_garbled_summary_reports_stage_and_last_sealed(monkeypatch, base_config, fake_dock_factory) -> None:
    fake = fake_dock_factory([([(-12.0, 1.0)], False)])

    def garbled(*args, **kwargs):
        if fake.calls:
            parse_summary(summary_text([(-12.0, 1.0)]).replace("1.000", "*****"))
        return fake(*args, **kwargs)

    monkeypatch.setattr("pepdock.docking.replicates.dock", garbled)
    config = base_config(search=SEARCH)
    with pytest.raises(ExternalToolFailure) as excinfo:
        _controller(config).run()

    assert excinfo.value.stage == "rep_02"
    assert excinfo.value.last_sealed == config.workdir / "replicates" / "rep_01" / "sealed.json"


def test_cancel_discards_partial_replicate(monkeypatch, base_config, fake_dock_factory) -> None:
    fake = fake_dock_factory([([(-12.0, 1.0)], False)])

    def cancelled(*args, **kwargs):
        if fake.calls:
            out_dir = args[3]
            (out_dir / "partial_out.pdb").write_text("ATOM")
            raise RunCancelled("Cancelled while running adcp")
        return fake(*args, **kwargs)

    monkeypatch.setattr("pepdock.docking.replicates.dock", cancelled)
    config = base_config(search=SEARCH)
    with pytest.raises(RunCancelled) as excinfo:
        _controller(config).run()

    replicates_dir = config.workdir / "replicates"
    assert excinfo.value.stage == "rep_02"
    assert excinfo.value.last_sealed == replicates_dir / "rep_01" / "sealed.json"
    assert not (replicates_dir / "rep_02").exists()
    assert (replicates_dir / "rep_01" / "sealed.json").exists()


def test_fresh_run_clears_replicates_of_previous_run(monkeypatch, base_config,
                                                     fake_dock_factory) -> None:
    first = fake_dock_factory([([(-12.0, 1.0)], False)] * 3 + [([(-12.1, 0.9)], True)])
    monkeypatch.setattr("pepdock.docking.replicates.dock", first)
    _controller(base_config(search={**SEARCH, "replicates": 3})).run()

    second = fake_dock_factory([([(-12.0, 1.0)], False)] * 2 + [([(-12.1, 0.9)], True)])
    monkeypatch.setattr("pepdock.docking.replicates.dock", second)
    config = base_config(search=SEARCH)
    _controller(config).run()

    replicates_dir = config.workdir / "replicates"
    assert sorted(path.name for path in replicates_dir.iterdir() if path.is_dir()) == [
        "rep_01", "rep_02", "rep_03_contact",
    ]
