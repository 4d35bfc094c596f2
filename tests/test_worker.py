"""Tests for Temporal worker entrypoint — registration and configuration."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from temporalio.contrib.pydantic import pydantic_data_converter

from app.activities.extract_text import extract_text
from app.activities.resolve_lines import resolve_lines
from app.worker import ACTIVITIES, WORKFLOWS, create_temporal_client, main, run_worker
from app.workflows.shopping_list import ShoppingListWorkflow


class TestRegistration:
    def test_pipeline_activities_registered(self) -> None:
        assert ACTIVITIES == [extract_text, resolve_lines]

    def test_activity_names_match_workflow_calls(self) -> None:
        """The workflow calls activities by these names."""
        names = [getattr(a, "__temporal_activity_definition").name for a in ACTIVITIES]
        assert names == ["extract_text", "resolve_lines"]

    def test_shopping_list_workflow_registered(self) -> None:
        assert [ShoppingListWorkflow] == WORKFLOWS


class TestCreateTemporalClient:
    """Verify Temporal client creation with local and cloud configs."""

    @pytest.mark.asyncio
    @patch("app.worker.Client")
    async def test_local_connection_no_tls(self, mock_client_cls: MagicMock) -> None:
        mock_client_cls.connect = AsyncMock(return_value=MagicMock())

        with patch("app.worker.settings") as mock_settings:
            mock_settings.temporal_address = "localhost:7233"
            mock_settings.temporal_namespace = "default"
            mock_settings.temporal_api_key = None

            await create_temporal_client()

            mock_client_cls.connect.assert_called_once_with(
                target_host="localhost:7233",
                namespace="default",
                data_converter=pydantic_data_converter,
            )

    @pytest.mark.asyncio
    @patch("app.worker.Client")
    async def test_cloud_connection_with_tls(self, mock_client_cls: MagicMock) -> None:
        """Temporal Cloud (API key set) should connect with TLS + API key."""
        mock_client_cls.connect = AsyncMock(return_value=MagicMock())

        with patch("app.worker.settings") as mock_settings:
            mock_settings.temporal_address = "shopping.tmprl.cloud:7233"
            mock_settings.temporal_namespace = "shopping-prod"
            mock_settings.temporal_api_key = "secret-key-123"

            await create_temporal_client()

            mock_client_cls.connect.assert_called_once_with(
                target_host="shopping.tmprl.cloud:7233",
                namespace="shopping-prod",
                tls=True,
                api_key="secret-key-123",
                data_converter=pydantic_data_converter,
            )


class TestRunWorker:
    """Verify the worker run lifecycle."""

    @pytest.mark.asyncio
    @patch("app.worker.Worker")
    @patch("app.worker.create_temporal_client")
    async def test_worker_created_with_correct_args(
        self,
        mock_create_client: AsyncMock,
        mock_worker_cls: MagicMock,
    ) -> None:
        mock_client = MagicMock()
        mock_create_client.return_value = mock_client

        mock_worker = MagicMock()
        mock_worker.run = AsyncMock()
        mock_worker_cls.return_value = mock_worker

        with patch("app.worker.settings") as mock_settings:
            mock_settings.temporal_task_queue = "shopping-list-tasks"

            await run_worker()

            mock_worker_cls.assert_called_once_with(
                mock_client,
                task_queue="shopping-list-tasks",
                workflows=WORKFLOWS,
                activities=ACTIVITIES,
            )
            mock_worker.run.assert_called_once()

    @pytest.mark.asyncio
    @patch("app.worker.create_temporal_client")
    async def test_connection_failure_logs_and_raises(
        self,
        mock_create_client: AsyncMock,
    ) -> None:
        mock_create_client.side_effect = ConnectionError("Temporal unreachable")

        with pytest.raises(ConnectionError, match="Temporal unreachable"):
            await run_worker()


class TestMain:
    @patch("app.worker.configure_logging")
    @patch("app.worker.run_worker", new_callable=AsyncMock)
    def test_fatal_error_exits_1(self, mock_run: AsyncMock, _logging: MagicMock) -> None:
        mock_run.side_effect = RuntimeError("boom")
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 1

