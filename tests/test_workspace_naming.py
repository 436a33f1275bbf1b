"""Tests for workspace directory and branch naming."""

import os
import re

from burrow.workspace_naming import (
    ID_LENGTH,
    bare_dir,
    full_clone_dir_name,
    generate_id,
    worktree_branch_name,
    worktree_dir_name,
)


class TestGenerateId:
    def test_format(self):
        for _ in range(50):
            assert re.match(r"^[a-z0-9]+$", generate_id())
            assert len(generate_id()) == ID_LENGTH

    def test_custom_length(self):
        assert len(generate_id(12)) == 12

    def test_ids_differ(self):
        assert len({generate_id() for _ in range(100)}) > 95


class TestNames:
    """Directory and branch names."""

    def test_full_clone_dir_name(self):
        assert full_clone_dir_name("widgets", "a1b2c3") == "widgets-a1b2c3"

    def test_worktree_dir_name(self):
        assert worktree_dir_name("widgets", "a1b2c3") == "widgets-wt-a1b2c3"

    def test_worktree_branch_name(self):
        assert worktree_branch_name("fix-login", "a1b2c3") == "burrow/fix-login-a1b2c3"

    def test_bare_dir(self):
        assert bare_dir("/repos", "acme", "widgets") == os.path.join("/repos", ".bare", "acme", "widgets")

    def test_bare_dir_without_owner(self):
        assert bare_dir("/repos", "", "widgets") == os.path.join("/repos", ".bare", "_", "widgets")
