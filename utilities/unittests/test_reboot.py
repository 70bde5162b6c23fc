"""Unit tests for reboot module"""

from unittest.mock import MagicMock, patch

import pytest
from websocket import WebSocketConnectionClosedException

from utilities.constants import REBOOT_COMMAND
from utilities.exceptions import (
    BootIdUnchangedError,
    ExecFailedError,
    HelperPodNotReadyError,
    NodeNotFoundError,
    NodeNotReadyError,
)
from utilities.executor import HelperPodExecutor
from utilities.reboot import RebootRecord, reboot_node, wait_for_boot_id_change, wait_for_node_ready
from utilities.unittests.conftest import helper_pod, node_snapshot

BEFORE = node_snapshot(boot_id="boot-1", ready=True)
DOWN = node_snapshot(boot_id="boot-1", ready=False)
BACK_NOT_READY = node_snapshot(boot_id="boot-2", ready=False)
BACK_READY = node_snapshot(boot_id="boot-2", ready=True)


@pytest.fixture
def executor():
    executor = MagicMock()
    executor.wait_for_ready_helper_pod.return_value = helper_pod()
    return executor


class TestWaitForBootIdChange:
    """Test cases for wait_for_boot_id_change function"""

    @patch("utilities.reboot.try_get_node")
    def test_tolerates_fetch_errors(self, mock_try_get_node, mock_client, fake_sampler):
        mock_try_get_node.side_effect = [None, DOWN, BACK_NOT_READY]
        record = RebootRecord(node_name="worker-0", original_boot_id="boot-1")

        assert wait_for_boot_id_change(client=mock_client, record=record) is BACK_NOT_READY
        assert fake_sampler.calls[0].sleep == 5
        assert fake_sampler.calls[0].wait_timeout == 600

    @patch("utilities.reboot.try_get_node")
    def test_unchanged(self, mock_try_get_node, mock_client, fake_sampler):
        mock_try_get_node.return_value = BEFORE
        record = RebootRecord(node_name="worker-0", original_boot_id="boot-1")

        with pytest.raises(BootIdUnchangedError) as exc_info:
            wait_for_boot_id_change(client=mock_client, record=record)

        assert exc_info.value.node == "worker-0"
        assert "boot-1" in exc_info.value.predicate


class TestWaitForNodeReady:
    """Test cases for wait_for_node_ready function"""

    @patch("utilities.reboot.try_get_node")
    def test_ready(self, mock_try_get_node, mock_client, fake_sampler):
        mock_try_get_node.side_effect = [None, BACK_NOT_READY, BACK_READY]

        assert wait_for_node_ready(client=mock_client, node_name="worker-0") is BACK_READY

    @patch("utilities.reboot.try_get_node")
    def test_never_ready(self, mock_try_get_node, mock_client, fake_sampler):
        mock_try_get_node.return_value = BACK_NOT_READY

        with pytest.raises(NodeNotReadyError):
            wait_for_node_ready(client=mock_client, node_name="worker-0")


class TestRebootNode:
    """Test cases for reboot_node function"""

    @patch("utilities.reboot.try_get_node")
    @patch("utilities.reboot.get_node")
    def test_reboot(self, mock_get_node, mock_try_get_node, mock_client, executor, fake_sampler):
        mock_get_node.return_value = BEFORE
        mock_try_get_node.side_effect = [DOWN, BACK_NOT_READY, BACK_NOT_READY, BACK_READY]

        record = reboot_node(client=mock_client, executor=executor, node_name="worker-0")

        assert record.original_boot_id == "boot-1"
        executor.wait_for_ready_helper_pod.assert_called_once_with(node_name="worker-0", timeout=60)
        executor.execute_on_pod.assert_called_once_with(
            pod=executor.wait_for_ready_helper_pod.return_value, command=REBOOT_COMMAND, node_name="worker-0"
        )

    @patch("utilities.reboot.try_get_node")
    @patch("utilities.reboot.get_node")
    def test_reboot_exec_error_is_ignored(self, mock_get_node, mock_try_get_node, mock_client, executor, fake_sampler):
        mock_get_node.return_value = BEFORE
        mock_try_get_node.side_effect = [BACK_READY, BACK_READY]
        executor.execute_on_pod.side_effect = ExecFailedError("connection reset by peer")

        record = reboot_node(client=mock_client, executor=executor, node_name="worker-0")

        assert record.node_name == "worker-0"

    @patch("utilities.reboot.try_get_node")
    @patch("utilities.reboot.get_node")
    def test_reboot_dropped_exec_stream_is_ignored(self, mock_get_node, mock_try_get_node, mock_client, fake_sampler):
        mock_get_node.return_value = BEFORE
        mock_try_get_node.return_value = BACK_READY
        pod = helper_pod()
        pod.execute.side_effect = WebSocketConnectionClosedException("Connection to remote host was lost.")
        executor = HelperPodExecutor(client=mock_client)

        with patch.object(executor, "wait_for_ready_helper_pod", return_value=pod):
            record = reboot_node(client=mock_client, executor=executor, node_name="worker-0")

        assert record.original_boot_id == "boot-1"
        pod.execute.assert_called_once()

    @patch("utilities.reboot.try_get_node")
    @patch("utilities.reboot.get_node")
    def test_already_rebooted_returns_on_first_poll(
        self, mock_get_node, mock_try_get_node, mock_client, executor, fake_sampler
    ):
        mock_get_node.return_value = BEFORE
        mock_try_get_node.return_value = BACK_READY

        reboot_node(client=mock_client, executor=executor, node_name="worker-0")

        executor.execute_on_pod.assert_called_once()
        assert mock_try_get_node.call_count == 2

    @patch("utilities.reboot.get_node")
    def test_no_helper_pod(self, mock_get_node, mock_client, executor):
        mock_get_node.return_value = BEFORE
        executor.wait_for_ready_helper_pod.side_effect = HelperPodNotReadyError("no helper", node="worker-0")

        with pytest.raises(HelperPodNotReadyError):
            reboot_node(client=mock_client, executor=executor, node_name="worker-0")

        executor.execute_on_pod.assert_not_called()

    @patch("utilities.reboot.get_node")
    def test_missing_node(self, mock_get_node, mock_client, executor):
        mock_get_node.side_effect = NodeNotFoundError("Node worker-9 not found", node="worker-9")

        with pytest.raises(NodeNotFoundError):
            reboot_node(client=mock_client, executor=executor, node_name="worker-9")

        executor.wait_for_ready_helper_pod.assert_not_called()

    @patch("utilities.reboot.try_get_node")
    @patch("utilities.reboot.get_node")
    def test_node_never_reboots(self, mock_get_node, mock_try_get_node, mock_client, executor, fake_sampler):
        mock_get_node.return_value = BEFORE
        mock_try_get_node.return_value = BEFORE

        with pytest.raises(BootIdUnchangedError):
            reboot_node(client=mock_client, executor=executor, node_name="worker-0")

    @patch("utilities.reboot.try_get_node")
    @patch("utilities.reboot.get_node")
    def test_node_never_ready(self, mock_get_node, mock_try_get_node, mock_client, executor, fake_sampler):
        mock_get_node.return_value = BEFORE
        mock_try_get_node.return_value = BACK_NOT_READY

        with pytest.raises(NodeNotReadyError):
            reboot_node(client=mock_client, executor=executor, node_name="worker-0")
