import sys

import pytest

from huc_tools import verify
from huc_tools.errors import EnumerationError
from huc_tools.registry import read_work_items, write_work_items


def test_verify_output(layout, ledger, tmp_path):
    write_work_items(layout.work_item_list, ['A', 'B', 'C'])
    for item_id in ('A', 'C'):
        layout.artifact_path(item_id).write_bytes(b'dem')
        ledger.mark_done(item_id)
    # an artifact without a Done marker is still pending
    layout.artifact_path('B').write_bytes(b'partial')

    pending_list = tmp_path / 'pending.txt'
    summary = verify.verify_output(layout.output_dir, pending_list=pending_list)

    assert summary.expected == 3
    assert summary.done == 2
    assert summary.pending == 1
    assert summary.deficit
    assert read_work_items(pending_list) == ['B']


def test_verify_output_complete(layout, ledger, tmp_path):
    write_work_items(layout.work_item_list, ['A'])
    layout.artifact_path('A').write_bytes(b'dem')
    ledger.mark_done('A')

    pending_list = tmp_path / 'pending.txt'
    summary = verify.verify_output(layout.output_dir, pending_list=pending_list)
    assert summary.done == summary.expected == 1
    assert not summary.deficit
    assert not pending_list.exists()


def test_verify_output_rasters(layout, ledger):
    write_work_items(layout.work_item_list, ['A'])
    layout.artifact_path('A').write_bytes(b'dem')
    ledger.mark_done('A')

    assert verify.verify_output(layout.output_dir).done == 1
    assert verify.verify_output(layout.output_dir, verify_rasters=True).done == 0


def test_verify_output_without_registry(layout):
    with pytest.raises(EnumerationError):
        verify.verify_output(layout.output_dir)


def test_main_without_registry(layout, monkeypatch):
    monkeypatch.setattr(sys, 'argv', ['verify_clip_output', str(layout.output_dir)])
    with pytest.raises(SystemExit) as exc:
        verify.main()
    assert exc.value.code == 1


def test_main_with_deficit(layout, monkeypatch):
    write_work_items(layout.work_item_list, ['A'])
    monkeypatch.setattr(sys, 'argv', ['verify_clip_output', str(layout.output_dir)])
    verify.main()
