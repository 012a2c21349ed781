"""Unit tests for the bounded file-tree snapshot."""
from debugtap.api.file_tree import (
    TraversalBudget,
    TraversalConfig,
    TraversalStatus,
    read_file_text,
    snapshot_file_tree,
)


class TestSnapshot:

    def test_nested_mapping(self, project_root):
        result = snapshot_file_tree(project_root)
        assert result.is_complete
        assert result.tree == {
            'app.py': 'print("hi")\n',
            'pkg': {'util.py': 'X = 1\n'},
        }

    def test_excluded_names_not_walked(self, project_root):
        (project_root / '.git').mkdir()
        (project_root / '.git' / 'HEAD').write_text('ref')
        (project_root / '__pycache__').mkdir()
        result = snapshot_file_tree(project_root)
        assert '.git' not in result.tree
        assert '__pycache__' not in result.tree

    def test_missing_root(self, tmp_path):
        result = snapshot_file_tree(tmp_path / 'nope')
        assert result.status is TraversalStatus.ERROR
        assert result.tree == {}
        assert 'Not a directory' in result.to_response()['error']

    def test_depth_limited(self, project_root):
        (project_root / 'pkg' / 'deep').mkdir()
        (project_root / 'pkg' / 'deep' / 'x.txt').write_text('x')
        result = snapshot_file_tree(project_root, TraversalConfig(max_depth=1))
        assert result.status is TraversalStatus.DEPTH_LIMITED
        assert result.tree['pkg'] == {'util.py': 'X = 1\n'}
        assert result.tree['app.py'] == 'print("hi")\n'

    def test_node_limited(self, tmp_path):
        for i in range(5):
            (tmp_path / f'f{i}.txt').write_text(str(i))
        result = snapshot_file_tree(tmp_path, TraversalConfig(max_nodes=2))
        assert result.status is TraversalStatus.NODE_LIMITED
        assert len(result.tree) == 2
        body = result.to_response()
        assert body['truncated'] is True
        assert body['truncation_reason'] == 'node_limited'
        assert body['elapsed_ms'] == round(result.elapsed_seconds * 1000, 1)

    def test_time_limited(self, project_root):
        result = snapshot_file_tree(project_root, TraversalConfig(time_budget=-1))
        assert result.status is TraversalStatus.TIME_LIMITED
        assert result.tree == {}
        body = result.to_response()
        assert body['truncation_reason'] == 'time_limited'
        assert body['elapsed_ms'] >= 0

    def test_large_file_truncated(self, tmp_path):
        (tmp_path / 'big.txt').write_text('a' * 100)
        result = snapshot_file_tree(tmp_path, TraversalConfig(max_file_bytes=10))
        assert result.tree['big.txt'].startswith('a' * 10 + '\n... [truncated at 10 bytes]')

    def test_complete_response_has_no_truncation_fields(self, project_root):
        body = snapshot_file_tree(project_root).to_response()
        assert 'truncated' not in body
        assert 'elapsed_ms' not in body
        assert body['path'] == str(project_root)


class TestBudget:

    def test_depth_check(self):
        budget = TraversalBudget(TraversalConfig(max_depth=2))
        assert budget.check_depth(2)
        assert not budget.check_depth(3)
        assert budget.exhaustion_reason is TraversalStatus.DEPTH_LIMITED

    def test_node_check(self):
        budget = TraversalBudget(TraversalConfig(max_nodes=1))
        assert budget.check_node()
        assert not budget.check_node()
        assert budget.is_exhausted


def test_read_file_text_replaces_invalid_utf8(tmp_path):
    path = tmp_path / 'bin'
    path.write_bytes(b'ok\xff')
    assert read_file_text(path, 100) == 'ok\ufffd'
