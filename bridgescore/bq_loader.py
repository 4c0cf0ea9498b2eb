"""BigQuery storage for scored calls, rescore audit and tenant scoring configuration."""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from google.cloud import bigquery
from google.cloud.exceptions import NotFound
from rich.console import Console
from rich.table import Table

from .config_resolver import TenantConfigSource
from .errors import CallNotFoundError, ConfigurationError, PersistenceError
from .recorder import CallRepository
from .schemas import CallRecord, CallScore, RescoreAuditEntry, TenantScoringConfig

console = Console()


CALLS_SCHEMA = [
    bigquery.SchemaField("call_id", "STRING", mode="REQUIRED", description="Unique call identifier"),
    bigquery.SchemaField("organization_id", "STRING", mode="NULLABLE", description="Owning organization or client"),
    bigquery.SchemaField("user_id", "STRING", mode="NULLABLE", description="Salesperson who submitted the call"),
    bigquery.SchemaField("transcript", "STRING", mode="NULLABLE", description="Call transcript text"),
    bigquery.SchemaField("status", "STRING", mode="NULLABLE", description="pending or scored"),

    # Scoring results
    bigquery.SchemaField("score_total", "INTEGER", mode="NULLABLE", description="Weighted total score"),
    bigquery.SchemaField("step_scores", "JSON", mode="NULLABLE", description="Per-step scores as JSON array"),
    bigquery.SchemaField("coaching", "JSON", mode="NULLABLE", description="Coaching feedback as JSON blob"),
    bigquery.SchemaField("scoring_method", "STRING", mode="NULLABLE", description="local or remote"),
    bigquery.SchemaField("scored_at", "TIMESTAMP", mode="NULLABLE"),

    # Assistant references of the first scored step
    bigquery.SchemaField("external_thread_ref", "STRING", mode="NULLABLE"),
    bigquery.SchemaField("external_run_ref", "STRING", mode="NULLABLE"),

    bigquery.SchemaField("updated_at", "TIMESTAMP", mode="NULLABLE"),
]

AUDIT_SCHEMA = [
    bigquery.SchemaField("call_id", "STRING", mode="REQUIRED"),
    bigquery.SchemaField("old_total", "INTEGER", mode="NULLABLE"),
    bigquery.SchemaField("new_total", "INTEGER", mode="REQUIRED"),
    bigquery.SchemaField("old_method", "STRING", mode="NULLABLE"),
    bigquery.SchemaField("new_method", "STRING", mode="REQUIRED"),
    bigquery.SchemaField("actor_id", "STRING", mode="NULLABLE", description="User who triggered the rescore"),
    bigquery.SchemaField("timestamp", "TIMESTAMP", mode="REQUIRED"),
]

TENANT_SCHEMA = [
    bigquery.SchemaField("tenant_id", "STRING", mode="REQUIRED", description="Organization or client id"),
    bigquery.SchemaField("assistant_id", "STRING", mode="NULLABLE", description="Assistant used for remote scoring"),
    bigquery.SchemaField("api_key", "STRING", mode="NULLABLE", description="Assistant service API key"),
    bigquery.SchemaField("enabled", "BOOLEAN", mode="NULLABLE", description="Remote scoring enabled for tenant"),
    bigquery.SchemaField("bridge_steps", "JSON", mode="NULLABLE", description="Bridge Selling rubric as JSON array"),
]


def _load_json(value: Any) -> Any:
    """JSON columns arrive parsed or as strings depending on client version"""
    if isinstance(value, str):
        return json.loads(value)
    return value


class BigQueryLoader(CallRepository, TenantConfigSource):
    """Handles reading and writing scoring data in BigQuery"""

    def __init__(self, credentials_path: str = "gcp_service_account_creds.json",
                 client: Optional[bigquery.Client] = None):
        """Initialize BigQuery client with service account credentials or default auth"""
        self.credentials_path = Path(credentials_path)

        # Get configuration from environment
        self.project_id = os.getenv('BQ_PROJECT_ID')
        self.dataset_name = os.getenv('BQ_DATASET', 'bridgescore')
        self.calls_table_name = os.getenv('BQ_CALLS_TABLE', 'calls')
        self.audit_table_name = os.getenv('BQ_AUDIT_TABLE', 'call_rescore_audit')
        self.tenant_table_name = os.getenv('BQ_TENANT_TABLE', 'tenant_scoring_configs')

        if client is not None:
            self.client = client
        else:
            # Default credentials on Cloud Run
            if self.credentials_path.exists():
                os.environ['GOOGLE_APPLICATION_CREDENTIALS'] = str(self.credentials_path.absolute())
            self.client = bigquery.Client(project=self.project_id)

        self.project_id = self.project_id or self.client.project

    def _table_id(self, table_name: str) -> str:
        return f"{self.project_id}.{self.dataset_name}.{table_name}"

    @property
    def calls_table_id(self) -> str:
        return self._table_id(self.calls_table_name)

    @property
    def audit_table_id(self) -> str:
        return self._table_id(self.audit_table_name)

    @property
    def tenant_table_id(self) -> str:
        return self._table_id(self.tenant_table_name)

    def create_dataset_if_not_exists(self) -> None:
        """Create dataset if it doesn't exist"""
        dataset_id = f"{self.project_id}.{self.dataset_name}"

        try:
            self.client.get_dataset(dataset_id)
            console.print(f"[blue]Dataset {self.dataset_name} already exists[/blue]")
        except NotFound:
            dataset = bigquery.Dataset(dataset_id)
            dataset.location = "US"
            dataset.description = "BridgeScore call scoring data"

            self.client.create_dataset(dataset, timeout=30)
            console.print(f"[green]Created dataset {self.dataset_name}[/green]")

    def create_table_if_not_exists(self, table_id: str, schema: List[bigquery.SchemaField], description: str) -> None:
        try:
            self.client.get_table(table_id)
            console.print(f"[blue]Table {table_id} already exists[/blue]")
            return
        except NotFound:
            pass

        table = bigquery.Table(table_id, schema=schema)
        table.description = description
        self.client.create_table(table, timeout=30)
        console.print(f"[green]Created table {table_id} with {len(schema)} columns[/green]")

    def create_tables_if_not_exist(self) -> None:
        self.create_dataset_if_not_exists()
        self.create_table_if_not_exists(self.calls_table_id, CALLS_SCHEMA, "Scored sales calls")
        self.create_table_if_not_exists(self.audit_table_id, AUDIT_SCHEMA, "Append-only rescore audit trail")
        self.create_table_if_not_exists(self.tenant_table_id, TENANT_SCHEMA, "Per-tenant scoring configuration")

    # ------------------------------------------------------------------
    # CallRepository
    # ------------------------------------------------------------------

    def get_call(self, call_id: str) -> CallRecord:
        query = f"""
        SELECT call_id, organization_id, user_id, transcript, status,
               score_total, step_scores, coaching, scoring_method, scored_at
        FROM `{self.calls_table_id}`
        WHERE call_id = @call_id
        LIMIT 1
        """
        job_config = bigquery.QueryJobConfig(
            query_parameters=[bigquery.ScalarQueryParameter("call_id", "STRING", call_id)]
        )

        try:
            rows = list(self.client.query(query, job_config=job_config).result())
        except NotFound as e:
            raise CallNotFoundError(f"Calls table not found: {self.calls_table_id}") from e
        except Exception as e:
            raise PersistenceError(f"Failed to read call {call_id}: {e}") from e

        if not rows:
            raise CallNotFoundError(f"Call not found: {call_id}")

        return self._row_to_call(dict(rows[0]))

    def _row_to_call(self, row: Dict[str, Any]) -> CallRecord:
        score = None
        if row.get("score_total") is not None and row.get("step_scores") is not None:
            score = CallScore(
                total=row["score_total"],
                step_scores=_load_json(row["step_scores"]),
                coaching=_load_json(row.get("coaching")),
                scoring_method=row.get("scoring_method") or "local",
                scored_at=row["scored_at"],
            )

        return CallRecord(
            call_id=row["call_id"],
            organization_id=row.get("organization_id"),
            user_id=row.get("user_id"),
            transcript=row.get("transcript") or "",
            status=row.get("status") or "pending",
            score=score,
        )

    def upsert_score(self, call_id: str, score: CallScore) -> None:
        """MERGE the score onto the call row (prevents duplicates, last writer wins)"""
        merge_query = f"""
        MERGE `{self.calls_table_id}` AS target
        USING (SELECT
            @call_id AS call_id,
            @score_total AS score_total,
            PARSE_JSON(@step_scores) AS step_scores,
            PARSE_JSON(@coaching) AS coaching,
            @scoring_method AS scoring_method,
            @scored_at AS scored_at,
            @external_thread_ref AS external_thread_ref,
            @external_run_ref AS external_run_ref
        ) AS source
        ON target.call_id = source.call_id
        WHEN MATCHED THEN
            UPDATE SET
                status = 'scored',
                score_total = source.score_total,
                step_scores = source.step_scores,
                coaching = source.coaching,
                scoring_method = source.scoring_method,
                scored_at = source.scored_at,
                external_thread_ref = source.external_thread_ref,
                external_run_ref = source.external_run_ref,
                updated_at = CURRENT_TIMESTAMP()
        WHEN NOT MATCHED THEN
            INSERT (call_id, status, score_total, step_scores, coaching, scoring_method, scored_at,
                    external_thread_ref, external_run_ref, updated_at)
            VALUES (source.call_id, 'scored', source.score_total, source.step_scores, source.coaching,
                    source.scoring_method, source.scored_at, source.external_thread_ref,
                    source.external_run_ref, CURRENT_TIMESTAMP())
        """
        job_config = bigquery.QueryJobConfig(query_parameters=[
            bigquery.ScalarQueryParameter("call_id", "STRING", call_id),
            *self._score_parameters(score),
        ])

        try:
            self.client.query(merge_query, job_config=job_config).result()
        except Exception as e:
            raise PersistenceError(f"Failed to upsert score for call {call_id}: {e}") from e

    def upsert_call(self, call: CallRecord) -> None:
        """MERGE the whole call row, identity and transcript included, with its score"""
        if call.score is None:
            raise PersistenceError(f"Call {call.call_id} has no score to store")

        merge_query = f"""
        MERGE `{self.calls_table_id}` AS target
        USING (SELECT
            @call_id AS call_id,
            @organization_id AS organization_id,
            @user_id AS user_id,
            @transcript AS transcript,
            @score_total AS score_total,
            PARSE_JSON(@step_scores) AS step_scores,
            PARSE_JSON(@coaching) AS coaching,
            @scoring_method AS scoring_method,
            @scored_at AS scored_at,
            @external_thread_ref AS external_thread_ref,
            @external_run_ref AS external_run_ref
        ) AS source
        ON target.call_id = source.call_id
        WHEN MATCHED THEN
            UPDATE SET
                organization_id = COALESCE(source.organization_id, target.organization_id),
                user_id = COALESCE(source.user_id, target.user_id),
                transcript = source.transcript,
                status = 'scored',
                score_total = source.score_total,
                step_scores = source.step_scores,
                coaching = source.coaching,
                scoring_method = source.scoring_method,
                scored_at = source.scored_at,
                external_thread_ref = source.external_thread_ref,
                external_run_ref = source.external_run_ref,
                updated_at = CURRENT_TIMESTAMP()
        WHEN NOT MATCHED THEN
            INSERT (call_id, organization_id, user_id, transcript, status, score_total, step_scores,
                    coaching, scoring_method, scored_at, external_thread_ref, external_run_ref, updated_at)
            VALUES (source.call_id, source.organization_id, source.user_id, source.transcript, 'scored',
                    source.score_total, source.step_scores, source.coaching, source.scoring_method,
                    source.scored_at, source.external_thread_ref, source.external_run_ref,
                    CURRENT_TIMESTAMP())
        """
        job_config = bigquery.QueryJobConfig(query_parameters=[
            bigquery.ScalarQueryParameter("call_id", "STRING", call.call_id),
            bigquery.ScalarQueryParameter("organization_id", "STRING", call.organization_id),
            bigquery.ScalarQueryParameter("user_id", "STRING", call.user_id),
            bigquery.ScalarQueryParameter("transcript", "STRING", call.transcript),
            *self._score_parameters(call.score),
        ])

        try:
            self.client.query(merge_query, job_config=job_config).result()
        except Exception as e:
            raise PersistenceError(f"Failed to upsert call {call.call_id}: {e}") from e

    def _score_parameters(self, score: CallScore) -> List[bigquery.ScalarQueryParameter]:
        payload = score.to_json_dict()
        first_step = score.step_scores[0] if score.step_scores else None
        return [
            bigquery.ScalarQueryParameter("score_total", "INT64", score.total),
            bigquery.ScalarQueryParameter("step_scores", "STRING", json.dumps(payload["stepScores"])),
            bigquery.ScalarQueryParameter("coaching", "STRING", json.dumps(payload.get("coaching"))),
            bigquery.ScalarQueryParameter("scoring_method", "STRING", score.scoring_method.value),
            bigquery.ScalarQueryParameter("scored_at", "TIMESTAMP", score.scored_at),
            bigquery.ScalarQueryParameter("external_thread_ref", "STRING",
                                          first_step.external_thread_ref if first_step else None),
            bigquery.ScalarQueryParameter("external_run_ref", "STRING",
                                          first_step.external_run_ref if first_step else None),
        ]

    def append_audit(self, entry: RescoreAuditEntry) -> None:
        row = {
            "call_id": entry.call_id,
            "old_total": entry.old_total,
            "new_total": entry.new_total,
            "old_method": entry.old_method.value if entry.old_method else None,
            "new_method": entry.new_method.value,
            "actor_id": entry.actor_id,
            "timestamp": entry.timestamp.isoformat(),
        }
        try:
            errors = self.client.insert_rows_json(self.audit_table_id, [row])
        except Exception as e:
            raise PersistenceError(f"Failed to append rescore audit for call {entry.call_id}: {e}") from e
        if errors:
            raise PersistenceError(f"Rescore audit insert rejected for call {entry.call_id}: {errors}")

    # ------------------------------------------------------------------
    # TenantConfigSource
    # ------------------------------------------------------------------

    def get_config(self, tenant_id: str) -> TenantScoringConfig:
        query = f"""
        SELECT tenant_id, assistant_id, api_key, enabled, bridge_steps
        FROM `{self.tenant_table_id}`
        WHERE tenant_id = @tenant_id
        LIMIT 1
        """
        job_config = bigquery.QueryJobConfig(
            query_parameters=[bigquery.ScalarQueryParameter("tenant_id", "STRING", tenant_id)]
        )

        try:
            rows = list(self.client.query(query, job_config=job_config).result())
        except Exception as e:
            raise ConfigurationError(f"Failed to load scoring configuration for tenant '{tenant_id}': {e}") from e

        if not rows:
            raise ConfigurationError(f"No scoring configuration for tenant '{tenant_id}'")

        row = dict(rows[0])
        fields = {
            "tenant_id": row["tenant_id"],
            "assistant_id": row.get("assistant_id"),
            "api_key": row.get("api_key"),
            "enabled": bool(row.get("enabled")),
        }
        bridge_steps = _load_json(row.get("bridge_steps"))
        if bridge_steps:
            fields["bridge_steps"] = bridge_steps

        try:
            return TenantScoringConfig(**fields)
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration for tenant '{tenant_id}': {e}") from e

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_table_info(self) -> Optional[Dict[str, Any]]:
        """Get information about the calls table"""
        try:
            table = self.client.get_table(self.calls_table_id)
            return {
                "table_id": self.calls_table_id,
                "num_rows": table.num_rows,
                "created": table.created,
                "modified": table.modified,
            }
        except NotFound:
            return None

    def query_recent_scores(self, limit: int = 5) -> List[Dict[str, Any]]:
        query = f"""
        SELECT call_id, organization_id, score_total, scoring_method, scored_at
        FROM `{self.calls_table_id}`
        WHERE scored_at IS NOT NULL
        ORDER BY scored_at DESC
        LIMIT @limit
        """
        job_config = bigquery.QueryJobConfig(
            query_parameters=[bigquery.ScalarQueryParameter("limit", "INT64", limit)]
        )
        try:
            return [dict(row) for row in self.client.query(query, job_config=job_config).result()]
        except Exception as e:
            console.print(f"[red]Failed to query recent scores: {e}[/red]")
            return []

    def display_table_status(self) -> None:
        info = self.get_table_info()
        if not info:
            console.print(f"[yellow]Table {self.calls_table_id} not found[/yellow]")
            return

        status_table = Table(title="BigQuery Calls Table Status")
        status_table.add_column("Property", style="cyan")
        status_table.add_column("Value", style="magenta")
        status_table.add_row("Table ID", info["table_id"])
        status_table.add_row("Total Rows", str(info["num_rows"]))
        status_table.add_row("Last Modified", str(info["modified"]))
        console.print(status_table)

        recent = self.query_recent_scores()
        if recent:
            recent_table = Table(title="Recently Scored Calls")
            recent_table.add_column("Call ID", style="cyan")
            recent_table.add_column("Organization", style="blue")
            recent_table.add_column("Total", style="magenta")
            recent_table.add_column("Method", style="green")
            recent_table.add_column("Scored At", style="yellow")
            for row in recent:
                recent_table.add_row(
                    row["call_id"],
                    row.get("organization_id") or "Unknown",
                    str(row["score_total"]),
                    row.get("scoring_method") or "",
                    row["scored_at"].strftime("%Y-%m-%d %H:%M") if row.get("scored_at") else "Unknown",
                )
            console.print(recent_table)
