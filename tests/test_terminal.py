#!/usr/bin/env python3
"""
Tests for the vfshell terminal: the command executor, redirection, piping,
streaming and the recall log.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import asyncio
import logging

import pytest
import pytest_asyncio

from vfshell.errors import ErrorKind
from vfshell.filetree import VirtualFileTree
from vfshell.nodes import NodeType
from vfshell.store import MemoryStore
from vfshell.terminal import (
    GIT_STATUS, NPM_START_OUTPUT, CommandExecutor, CommandHistory, EntryType,
    RecallDirection, TerminalConfig, TerminalSession, command_log_key, main,
)


@pytest_asyncio.fixture
async def tree():
    tree = VirtualFileTree(MemoryStore())
    await tree.create_node('/', 'src', NodeType.FOLDER)
    await tree.create_node('/src', 'App.tsx', content='line one\nTODO: fix\nline three')
    await tree.create_node('/src', 'components', NodeType.FOLDER)
    return tree


@pytest.fixture
def config():
    return TerminalConfig(stream_interval=0.01)


@pytest.fixture
def executor(tree, config):
    return CommandExecutor(tree, config)


@pytest.fixture
def session():
    return TerminalSession(id='t1', name='Terminal 1', current_dir='/src',
                           env={'PATH': '/bin:/usr/bin', 'HOME': '/home/user'})


class SlowStore(MemoryStore):
    """MemoryStore whose every write suspends for a moment."""

    async def _commit(self):
        await asyncio.sleep(0.01)


def outputs(session):
    return [e.content for e in session.history if e.type is EntryType.OUTPUT]


def errors(session):
    return [e.content for e in session.history if e.type is EntryType.ERROR]


async def stop(session):
    """Cancel a streaming command and let its task finish."""
    task = session.stream_task
    session.cancel_streaming()
    if task is not None:
        await asyncio.wait([task])


class TestBasicCommands:

    @pytest.mark.asyncio
    async def test_pwd_and_echo(self, executor, session):
        result = await executor.execute(session, 'pwd')
        assert result.output_lines == ['/src']
        result = await executor.execute(session, 'echo hello   world')
        assert result.text == 'hello world'

    @pytest.mark.asyncio
    async def test_history_entries(self, executor, session):
        await executor.execute(session, 'pwd')
        assert [(e.type, e.content) for e in session.history] == [
            (EntryType.COMMAND, 'pwd'),
            (EntryType.OUTPUT, '/src'),
        ]

    @pytest.mark.asyncio
    async def test_empty_line_does_nothing(self, executor, session):
        result = await executor.execute(session, '   ')
        assert result.ok
        assert session.history == []
        assert len(session.command_log) == 0

    @pytest.mark.asyncio
    async def test_ls(self, executor, session):
        result = await executor.execute(session, 'ls')
        assert result.output_lines == ['App.tsx', 'components']
        result = await executor.execute(session, 'ls /')
        assert result.output_lines == ['src']
        result = await executor.execute(session, 'ls App.tsx')
        assert result.output_lines == ['App.tsx']

    @pytest.mark.asyncio
    async def test_ls_missing(self, executor, session):
        result = await executor.execute(session, 'ls nowhere')
        assert result.error is ErrorKind.PATH_NOT_FOUND
        assert errors(session) == ['Error: /src/nowhere: No such file or directory']

    @pytest.mark.asyncio
    async def test_command_names_are_case_insensitive(self, executor, session):
        result = await executor.execute(session, 'PWD')
        assert result.text == '/src'

    @pytest.mark.asyncio
    async def test_unknown_command(self, executor, session):
        result = await executor.execute(session, 'frobnicate now')
        assert result.error is ErrorKind.UNKNOWN_COMMAND
        assert result.exit_code == 127
        assert errors(session) == ['Error: Command not found: frobnicate']

    @pytest.mark.asyncio
    async def test_help_date_git_env(self, executor, session):
        assert 'mkdir <dir>' in (await executor.execute(session, 'help')).text
        assert (await executor.execute(session, 'date')).text
        assert (await executor.execute(session, 'git status')).text == GIT_STATUS
        env = (await executor.execute(session, 'env')).output_lines
        assert 'HOME=/home/user' in env

    @pytest.mark.asyncio
    async def test_clear_keeps_recall_log(self, executor, session):
        await executor.execute(session, 'pwd')
        await executor.execute(session, 'clear')
        assert session.history == []
        assert session.command_log.history == ['pwd', 'clear']

    @pytest.mark.asyncio
    async def test_history_command(self, executor, session):
        await executor.execute(session, 'pwd')
        result = await executor.execute(session, 'history')
        assert result.output_lines == ['1  pwd', '2  history']


class TestNavigation:

    @pytest.mark.asyncio
    async def test_cd(self, executor, session):
        await executor.execute(session, 'cd components')
        assert session.current_dir == '/src/components'
        await executor.execute(session, 'cd ..')
        assert session.current_dir == '/src'
        await executor.execute(session, 'cd /')
        assert session.current_dir == '/'

    @pytest.mark.asyncio
    async def test_cd_updates_pwd(self, executor, session):
        await executor.execute(session, 'cd components')
        result = await executor.execute(session, 'env')
        assert 'PWD=/src/components' in result.output_lines

    @pytest.mark.asyncio
    async def test_cd_into_file(self, executor, session):
        result = await executor.execute(session, 'cd App.tsx')
        assert result.error is ErrorKind.NOT_A_DIRECTORY
        assert session.current_dir == '/src'

    @pytest.mark.asyncio
    async def test_cd_without_argument_goes_home(self, executor, session, tree):
        result = await executor.execute(session, 'cd')
        assert result.error is ErrorKind.PATH_NOT_FOUND
        await tree.create_node('/', 'home', NodeType.FOLDER)
        await tree.create_node('/home', 'user', NodeType.FOLDER)
        await executor.execute(session, 'cd')
        assert session.current_dir == '/home/user'

    @pytest.mark.asyncio
    async def test_multi_segment_dotdot_is_rejected(self, executor, session):
        result = await executor.execute(session, 'cd ../src')
        assert result.error is ErrorKind.INVALID_ARGUMENT
        assert session.current_dir == '/src'


class TestFileCommands:

    @pytest.mark.asyncio
    async def test_touch_then_cat(self, executor, session, tree):
        result = await executor.execute(session, 'touch notes.txt')
        assert result.text == 'Created file: /src/notes.txt'
        assert (await executor.execute(session, 'cat notes.txt')).output_lines == []
        assert tree.lookup('/src/notes.txt').content == ''

    @pytest.mark.asyncio
    async def test_mkdir(self, executor, session, tree):
        result = await executor.execute(session, 'mkdir lib')
        assert result.text == 'Created directory: /src/lib'
        result = await executor.execute(session, 'mkdir lib')
        assert result.error is ErrorKind.PATH_EXISTS

    @pytest.mark.asyncio
    async def test_missing_arguments(self, executor, session):
        for line in ('mkdir', 'touch', 'cat', 'rm', 'mv a', 'cp a', 'grep x'):
            result = await executor.execute(session, line)
            assert result.error is ErrorKind.MISSING_ARGUMENT, line

    @pytest.mark.asyncio
    async def test_cat_folder(self, executor, session):
        result = await executor.execute(session, 'cat components')
        assert result.error is ErrorKind.NOT_A_FILE

    @pytest.mark.asyncio
    async def test_rm(self, executor, session, tree):
        await executor.execute(session, 'touch components/Button.tsx')
        result = await executor.execute(session, 'rm components')
        assert result.error is ErrorKind.DIRECTORY_NOT_EMPTY
        result = await executor.execute(session, 'rm -rf components')
        assert result.text == 'Removed /src/components'
        assert tree.lookup('/src/components') is None

    @pytest.mark.asyncio
    async def test_mv_renames_and_moves(self, executor, session, tree):
        await executor.execute(session, 'mv App.tsx Main.tsx')
        assert tree.lookup('/src/Main.tsx') is not None
        await executor.execute(session, 'mv Main.tsx components/Main.tsx')
        assert tree.lookup('/src/components/Main.tsx') is not None

    @pytest.mark.asyncio
    async def test_mv_onto_existing(self, executor, session):
        result = await executor.execute(session, 'mv App.tsx components')
        assert result.error is ErrorKind.PATH_EXISTS

    @pytest.mark.asyncio
    async def test_cp(self, executor, session, tree):
        result = await executor.execute(session, 'cp -r components widgets')
        assert result.ok
        assert tree.lookup('/src/widgets').id != tree.lookup('/src/components').id

    @pytest.mark.asyncio
    async def test_grep(self, executor, session):
        result = await executor.execute(session, 'grep TODO App.tsx')
        assert result.output_lines == ['TODO: fix']
        result = await executor.execute(session, 'grep ^line App.tsx')
        assert result.output_lines == ['line one', 'line three']

    @pytest.mark.asyncio
    async def test_grep_bad_pattern(self, executor, session):
        result = await executor.execute(session, 'grep ( App.tsx')
        assert result.error is ErrorKind.INVALID_ARGUMENT


class TestRedirectAndPipe:

    @pytest.mark.asyncio
    async def test_redirect_creates_file_and_hides_output(self, executor, session, tree):
        result = await executor.execute(session, 'echo hi > out.txt')
        assert result.output_lines == []
        assert outputs(session) == []
        assert tree.lookup('/src/out.txt').content == 'hi'

    @pytest.mark.asyncio
    async def test_truncate_and_append(self, executor, session, tree):
        await executor.execute(session, 'echo one > log')
        await executor.execute(session, 'echo two >> log')
        assert tree.lookup('/src/log').content == 'one\ntwo'
        await executor.execute(session, 'echo three > log')
        assert tree.lookup('/src/log').content == 'three'

    @pytest.mark.asyncio
    async def test_append_to_empty_file(self, executor, session, tree):
        await executor.execute(session, 'touch empty')
        await executor.execute(session, 'echo first >> empty')
        assert tree.lookup('/src/empty').content == 'first'

    @pytest.mark.asyncio
    async def test_truncate_with_empty_output(self, executor, session, tree):
        await executor.execute(session, 'echo > App.tsx')
        assert tree.lookup('/src/App.tsx').content == ''

    @pytest.mark.asyncio
    async def test_redirect_into_folder(self, executor, session):
        result = await executor.execute(session, 'echo hi > components')
        assert result.error is ErrorKind.NOT_A_FILE

    @pytest.mark.asyncio
    async def test_redirect_into_locked_file(self, executor, session, tree):
        await tree.update_node('/src/App.tsx', is_locked=True)
        result = await executor.execute(session, 'echo hi > App.tsx')
        assert result.error is ErrorKind.FILE_LOCKED

    @pytest.mark.asyncio
    async def test_concurrent_redirects_last_write_wins(self):
        tree = VirtualFileTree(SlowStore())
        await tree.create_node('/', 'src', NodeType.FOLDER)
        executor = CommandExecutor(tree, TerminalConfig())
        a = TerminalSession(id='a', name='a', current_dir='/src')
        b = TerminalSession(id='b', name='b', current_dir='/src')

        first, second = await asyncio.gather(
            executor.execute(a, 'echo one > f.txt'),
            executor.execute(b, 'echo two > f.txt'),
        )
        assert first.ok and second.ok
        node = tree.lookup('/src/f.txt')
        assert node.content == 'two'
        assert node.version == 1

    @pytest.mark.asyncio
    async def test_concurrent_appends_keep_both_lines(self):
        tree = VirtualFileTree(SlowStore())
        await tree.create_node('/', 'src', NodeType.FOLDER)
        executor = CommandExecutor(tree, TerminalConfig())
        a = TerminalSession(id='a', name='a', current_dir='/src')
        b = TerminalSession(id='b', name='b', current_dir='/src')

        await asyncio.gather(
            executor.execute(a, 'echo one >> log'),
            executor.execute(b, 'echo two >> log'),
        )
        assert tree.lookup('/src/log').content == 'one\ntwo'

    @pytest.mark.asyncio
    async def test_pipe_prepends_output_as_argument(self, executor, session):
        result = await executor.execute(session, 'pwd | echo dir:')
        assert result.text == '/src dir:'
        assert outputs(session) == ['/src dir:']

    @pytest.mark.asyncio
    async def test_pipe_then_redirect(self, executor, session, tree):
        await executor.execute(session, 'pwd | echo > where.txt')
        assert tree.lookup('/src/where.txt').content == '/src'

    @pytest.mark.asyncio
    async def test_pipe_without_right_command(self, executor, session):
        result = await executor.execute(session, 'pwd |')
        assert result.error is ErrorKind.MISSING_ARGUMENT


class TestStreaming:

    @pytest.mark.asyncio
    async def test_npm_start_streams_lines(self, executor, session):
        result = await executor.execute(session, 'npm start')
        assert result.ok
        assert session.is_running
        await session.wait_idle()
        assert not session.is_running
        assert outputs(session) == NPM_START_OUTPUT

    @pytest.mark.asyncio
    async def test_busy_session_rejects_input(self, executor, session):
        await executor.execute(session, 'npm start')
        before = len(session.command_log)
        result = await executor.execute(session, 'ls')
        assert result.error is ErrorKind.BUSY
        assert len(session.command_log) == before
        assert session.history[-1].type is EntryType.ERROR
        assert 'npm' in session.history[-1].content
        await stop(session)

    @pytest.mark.asyncio
    async def test_sessions_are_independent(self, executor, tree, session):
        other = TerminalSession(id='t2', name='Terminal 2', current_dir='/src')
        await executor.execute(session, 'npm start')
        result = await executor.execute(other, 'cd components')
        assert result.ok
        assert other.current_dir == '/src/components'
        assert session.current_dir == '/src'
        await stop(session)

    @pytest.mark.asyncio
    async def test_cancel_stops_output(self, tree):
        executor = CommandExecutor(tree, TerminalConfig(stream_interval=10))
        session = TerminalSession(id='t3', name='slow', current_dir='/src')
        await executor.execute(session, 'npm start')
        task = session.stream_task
        assert session.cancel_streaming()
        await asyncio.wait([task])
        assert task.cancelled()
        assert not session.is_running
        assert outputs(session) == []

    @pytest.mark.asyncio
    async def test_npm_other_subcommand(self, executor, session):
        result = await executor.execute(session, 'npm install')
        assert result.error is ErrorKind.UNKNOWN_COMMAND
        assert not session.is_running


class TestCommandLog:

    @pytest.mark.asyncio
    async def test_log_is_persisted(self, executor, session, tree):
        await executor.execute(session, 'pwd')
        await executor.execute(session, 'ls')
        assert await tree.store.get_setting(command_log_key('t1')) == ['pwd', 'ls']

    @pytest.mark.asyncio
    async def test_log_write_failure_does_not_fail_command(self, executor, session, tree, caplog):
        async def broken(key, value):
            raise OSError("store offline")

        tree.store.save_setting = broken
        with caplog.at_level(logging.WARNING, logger='vfshell.terminal'):
            result = await executor.execute(session, 'pwd')
        assert result.text == '/src'
        assert session.command_log.history == ['pwd']
        assert 'could not persist command log' in caplog.text

    def test_recall_cursor(self):
        log = CommandHistory()
        for line in ('a', 'b', 'c'):
            log.add(line)
        assert log.recall(RecallDirection.UP) == 'c'
        assert log.recall(RecallDirection.UP) == 'b'
        assert log.recall(RecallDirection.UP) == 'a'
        assert log.recall(RecallDirection.UP) == 'a'
        assert log.recall(RecallDirection.DOWN) == 'b'
        assert log.recall(RecallDirection.DOWN) == 'c'
        assert log.recall(RecallDirection.DOWN) == ''
        assert log.recall(RecallDirection.DOWN) == ''
        assert log.history == ['a', 'b', 'c']

    def test_add_resets_cursor(self):
        log = CommandHistory()
        log.add('a')
        log.add('b')
        log.previous()
        log.previous()
        log.add('c')
        assert log.previous() == 'c'

    def test_empty_log(self):
        log = CommandHistory()
        assert log.previous() == ''
        assert log.next() == ''

    def test_log_is_bounded(self):
        log = CommandHistory(max_size=3)
        for i in range(5):
            log.add(f'cmd{i}')
        assert log.history == ['cmd2', 'cmd3', 'cmd4']


class TestMain:
    """The command-line entry point."""

    def test_single_command(self, monkeypatch, capsys, tmp_path):
        store = tmp_path / 'workspace.json'
        monkeypatch.setattr(sys, 'argv', ['vfshell', '--store', str(store), '-c', 'pwd'])
        with pytest.raises(SystemExit) as excinfo:
            main()
        assert excinfo.value.code == 0
        assert capsys.readouterr().out.strip() == '/src'
        assert store.exists()

    def test_state_is_kept_between_runs(self, monkeypatch, capsys, tmp_path):
        store = str(tmp_path / 'workspace.json')
        for line in ('echo persisted > note.txt', 'cat note.txt'):
            monkeypatch.setattr(sys, 'argv', ['vfshell', '--store', store, '-c', line])
            with pytest.raises(SystemExit):
                main()
        assert capsys.readouterr().out.strip() == 'persisted'

    def test_unknown_command_exit_code(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, 'argv', ['vfshell', '-c', 'nope'])
        with pytest.raises(SystemExit) as excinfo:
            main()
        assert excinfo.value.code == 127
        assert 'Command not found: nope' in capsys.readouterr().out
