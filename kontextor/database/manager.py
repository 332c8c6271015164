"""
Database manager for Kontextor.

This module handles all storage operations using DuckDB. It only offers
document-store primitives (get/insert/patch/delete and filtered lookups);
there are no joins and no foreign keys, so reference integrity is maintained
by the reference manager rather than by the schema.
"""

import duckdb
import json
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence

from ..models import Block, Zone, Workspace, Snapshot, SnapshotBlock


_BLOCK_COLUMNS = (
    "block_id", "workspace_id", "content", "kind", "zone", "order_key",
    "reference_id", "content_hash", "token_count", "original_token_count",
    "is_draft", "is_compressed", "compression_strategy", "compressed_at",
    "created_at", "updated_at"
)

# Columns patch_block may change; block_id and workspace_id are immutable
_PATCHABLE_BLOCK_COLUMNS = frozenset(_BLOCK_COLUMNS) - {"block_id", "workspace_id", "created_at"}

_WORKSPACE_COLUMNS = (
    "workspace_id", "name", "workflow_name", "run_id", "step_number",
    "created_at", "updated_at"
)


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


def _to_db(value: Any) -> Any:
    if isinstance(value, Zone):
        return value.value
    return value


class DatabaseManager:
    """
    Manages the DuckDB database holding workspaces, blocks and snapshots.
    """

    def __init__(self, db_path: str = "kontextor.db"):
        """
        Initialize the database manager.

        Args:
            db_path: Path to the DuckDB database file (":memory:" for an in-memory store)
        """
        self.db_path = db_path
        self.connection = None
        self._transaction_depth = 0

    def connect(self):
        """Establish connection to the database."""
        self.connection = duckdb.connect(self.db_path)

    def disconnect(self):
        """Close the database connection."""
        if self.connection:
            self.connection.close()
            self.connection = None

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()

    def _conn(self):
        if not self.connection:
            raise RuntimeError("Database connection not established")
        return self.connection

    @contextmanager
    def transaction(self) -> Iterator["DatabaseManager"]:
        """
        Run the enclosed operations as one atomic transaction.

        Nested calls join the outermost transaction, so a lifecycle operation
        invoked from another one commits or rolls back together with it. Any
        exception rolls the whole transaction back and propagates.
        """
        conn = self._conn()

        if self._transaction_depth:
            self._transaction_depth += 1
            try:
                yield self
            finally:
                self._transaction_depth -= 1
            return

        conn.execute("BEGIN TRANSACTION")
        self._transaction_depth = 1
        try:
            yield self
        except BaseException:
            self._transaction_depth = 0
            conn.execute("ROLLBACK")
            raise
        self._transaction_depth = 0
        conn.execute("COMMIT")

    @property
    def in_transaction(self) -> bool:
        return self._transaction_depth > 0

    def initialize_database(self):
        """
        Create all necessary tables if they don't exist.
        """
        conn = self._conn()

        conn.execute("""
            CREATE TABLE IF NOT EXISTS workspaces (
                workspace_id VARCHAR PRIMARY KEY,
                name VARCHAR NOT NULL,
                workflow_name VARCHAR,
                run_id VARCHAR,
                step_number INTEGER,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # No secondary indexes: zone, order_key, reference_id and content_hash
        # are all rewritten in place and lookups are column scans
        conn.execute("""
            CREATE TABLE IF NOT EXISTS blocks (
                block_id VARCHAR PRIMARY KEY,
                workspace_id VARCHAR NOT NULL,
                content TEXT NOT NULL DEFAULT '',
                kind VARCHAR NOT NULL,
                zone VARCHAR NOT NULL,
                order_key DOUBLE NOT NULL,
                reference_id VARCHAR,
                content_hash VARCHAR,
                token_count INTEGER,
                original_token_count INTEGER,
                is_draft BOOLEAN NOT NULL DEFAULT false,
                is_compressed BOOLEAN NOT NULL DEFAULT false,
                compression_strategy VARCHAR,
                compressed_at TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS snapshots (
                snapshot_id VARCHAR PRIMARY KEY,
                workspace_id VARCHAR NOT NULL,
                name VARCHAR NOT NULL,
                blocks TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        conn.execute("CREATE SEQUENCE IF NOT EXISTS generation_id_seq;")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS generations (
                generation_id BIGINT PRIMARY KEY DEFAULT nextval('generation_id_seq'),
                agent_name VARCHAR NOT NULL,
                workspace_id VARCHAR,
                block_id VARCHAR,
                system_prompt TEXT,
                messages TEXT NOT NULL,
                model_name VARCHAR NOT NULL,
                raw_response TEXT NOT NULL,
                success BOOLEAN NOT NULL,
                error_message TEXT,
                execution_time_ms INTEGER,
                called_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    # ============ Workspaces ============

    def _row_to_workspace(self, row) -> Workspace:
        return Workspace(**dict(zip(_WORKSPACE_COLUMNS, row)))

    def create_workspace(
        self,
        name: str = "Untitled",
        workflow_name: Optional[str] = None,
        run_id: Optional[str] = None,
        step_number: Optional[int] = None
    ) -> Workspace:
        """
        Insert a new workspace row.

        Args:
            name: Human-readable name
            workflow_name: Workflow the workspace is a step of (optional)
            run_id: Identifier shared by every step workspace of one workflow run
            step_number: Zero-based workflow step index (optional)

        Returns:
            The created workspace
        """
        conn = self._conn()
        now = datetime.now()
        workspace = Workspace(
            workspace_id=str(uuid.uuid4()),
            name=name,
            workflow_name=workflow_name,
            run_id=run_id,
            step_number=step_number,
            created_at=now,
            updated_at=now
        )
        conn.execute(f"""
            INSERT INTO workspaces ({', '.join(_WORKSPACE_COLUMNS)})
            VALUES ({_placeholders(len(_WORKSPACE_COLUMNS))})
        """, [getattr(workspace, column) for column in _WORKSPACE_COLUMNS])
        return workspace

    def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        """
        Retrieve a workspace by id.

        Returns:
            The workspace if found, None otherwise
        """
        result = self._conn().execute(f"""
            SELECT {', '.join(_WORKSPACE_COLUMNS)}
            FROM workspaces
            WHERE workspace_id = ?
        """, [workspace_id]).fetchone()
        return self._row_to_workspace(result) if result else None

    def list_workspaces(self) -> List[Workspace]:
        results = self._conn().execute(f"""
            SELECT {', '.join(_WORKSPACE_COLUMNS)}
            FROM workspaces
            ORDER BY created_at, workspace_id
        """).fetchall()
        return [self._row_to_workspace(row) for row in results]

    def find_step_workspace(self, run_id: str, step_number: int) -> Optional[Workspace]:
        """Find the workspace of a given step within a workflow run."""
        result = self._conn().execute(f"""
            SELECT {', '.join(_WORKSPACE_COLUMNS)}
            FROM workspaces
            WHERE run_id = ? AND step_number = ?
            ORDER BY created_at
            LIMIT 1
        """, [run_id, step_number]).fetchone()
        return self._row_to_workspace(result) if result else None

    def patch_workspace(self, workspace_id: str, **fields) -> None:
        unknown = set(fields) - set(_WORKSPACE_COLUMNS[1:])
        if unknown:
            raise ValueError(f"Unknown workspace fields: {sorted(unknown)}")
        fields.setdefault("updated_at", datetime.now())
        assignments = ", ".join(f"{column} = ?" for column in fields)
        self._conn().execute(
            f"UPDATE workspaces SET {assignments} WHERE workspace_id = ?",
            [_to_db(value) for value in fields.values()] + [workspace_id]
        )

    def touch_workspace(self, workspace_id: str) -> None:
        """Bump a workspace's updated_at timestamp."""
        self.patch_workspace(workspace_id)

    def delete_workspace(self, workspace_id: str) -> bool:
        """
        Delete a workspace row (its blocks must be removed separately).

        Returns:
            True if a row was deleted
        """
        deleted = self._conn().execute(
            "DELETE FROM workspaces WHERE workspace_id = ? RETURNING workspace_id",
            [workspace_id]
        ).fetchall()
        return bool(deleted)

    # ============ Blocks ============

    def _row_to_block(self, row) -> Block:
        return Block(**dict(zip(_BLOCK_COLUMNS, row)))

    def _select_blocks(self, where: str, params: Sequence[Any], order_by: str = "") -> List[Block]:
        query = f"SELECT {', '.join(_BLOCK_COLUMNS)} FROM blocks WHERE {where}"
        if order_by:
            query += f" ORDER BY {order_by}"
        results = self._conn().execute(query, list(params)).fetchall()
        return [self._row_to_block(row) for row in results]

    def insert_block(self, block: Block) -> Block:
        """
        Insert a block row as given.

        Args:
            block: The fully populated block to store

        Returns:
            The stored block
        """
        self._conn().execute(f"""
            INSERT INTO blocks ({', '.join(_BLOCK_COLUMNS)})
            VALUES ({_placeholders(len(_BLOCK_COLUMNS))})
        """, [_to_db(getattr(block, column)) for column in _BLOCK_COLUMNS])
        return block

    def get_block(self, block_id: str) -> Optional[Block]:
        """
        Retrieve a raw (unresolved) block by id.

        Returns:
            The block if found, None otherwise
        """
        blocks = self._select_blocks("block_id = ?", [block_id])
        return blocks[0] if blocks else None

    def get_blocks(self, block_ids: Sequence[str]) -> Dict[str, Block]:
        """
        Retrieve many raw blocks in one query.

        Args:
            block_ids: Ids to fetch; missing ids are simply absent from the result

        Returns:
            Blocks keyed by block id
        """
        ids = list(dict.fromkeys(block_ids))
        if not ids:
            return {}
        blocks = self._select_blocks(f"block_id IN ({_placeholders(len(ids))})", ids)
        return {block.block_id: block for block in blocks}

    def patch_block(self, block_id: str, **fields) -> None:
        """
        Update selected columns of a block.

        Args:
            block_id: The block to update
            **fields: Column values to set; updated_at is set to now unless given

        Raises:
            ValueError: If a field is unknown or immutable
        """
        unknown = set(fields) - _PATCHABLE_BLOCK_COLUMNS
        if unknown:
            raise ValueError(f"Cannot patch block fields: {sorted(unknown)}")
        fields.setdefault("updated_at", datetime.now())
        assignments = ", ".join(f"{column} = ?" for column in fields)
        self._conn().execute(
            f"UPDATE blocks SET {assignments} WHERE block_id = ?",
            [_to_db(value) for value in fields.values()] + [block_id]
        )

    def delete_block(self, block_id: str) -> bool:
        """
        Delete a single block row.

        Returns:
            True if a row was deleted
        """
        deleted = self._conn().execute(
            "DELETE FROM blocks WHERE block_id = ? RETURNING block_id",
            [block_id]
        ).fetchall()
        return bool(deleted)

    def delete_workspace_blocks(self, workspace_id: str) -> int:
        """
        Delete every block owned by a workspace.

        Returns:
            Number of deleted rows
        """
        deleted = self._conn().execute(
            "DELETE FROM blocks WHERE workspace_id = ? RETURNING block_id",
            [workspace_id]
        ).fetchall()
        return len(deleted)

    def list_workspace_blocks(self, workspace_id: str, zone: Optional[Zone] = None) -> List[Block]:
        """
        List a workspace's raw blocks, ordered by zone then order key.

        Args:
            workspace_id: The owning workspace
            zone: Optional zone filter

        Returns:
            List of blocks
        """
        # Zone names sort alphabetically in assembly order
        if zone is not None:
            return self._select_blocks(
                "workspace_id = ? AND zone = ?",
                [workspace_id, _to_db(zone)],
                "order_key, block_id"
            )
        return self._select_blocks("workspace_id = ?", [workspace_id], "zone, order_key, block_id")

    def max_order_key(self, workspace_id: str, zone: Zone) -> Optional[float]:
        """Get the largest order key in a workspace zone, None if the zone is empty."""
        result = self._conn().execute("""
            SELECT max(order_key) FROM blocks
            WHERE workspace_id = ? AND zone = ?
        """, [workspace_id, _to_db(zone)]).fetchone()
        return result[0] if result else None

    def find_by_content_hash(
        self,
        content_hash: str,
        exclude_workspace_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[Block]:
        """
        Find regular blocks with a given content hash.

        Args:
            content_hash: The fingerprint to look up
            exclude_workspace_id: Skip blocks owned by this workspace
            limit: Limit number of results

        Returns:
            Matching blocks, oldest first
        """
        where = "content_hash = ? AND reference_id IS NULL"
        params: List[Any] = [content_hash]
        if exclude_workspace_id is not None:
            where += " AND workspace_id <> ?"
            params.append(exclude_workspace_id)
        order_by = "created_at, block_id"
        if limit:
            order_by += f" LIMIT {int(limit)}"
        return self._select_blocks(where, params, order_by)

    def find_referencing(
        self,
        canonical_ids: Sequence[str],
        exclude_workspace_id: Optional[str] = None
    ) -> List[Block]:
        """
        Find every block whose reference points at one of the given blocks.

        Args:
            canonical_ids: Ids of the referenced blocks
            exclude_workspace_id: Skip referencing blocks owned by this workspace

        Returns:
            Referencing blocks
        """
        ids = list(dict.fromkeys(canonical_ids))
        if not ids:
            return []
        where = f"reference_id IN ({_placeholders(len(ids))})"
        params: List[Any] = list(ids)
        if exclude_workspace_id is not None:
            where += " AND workspace_id <> ?"
            params.append(exclude_workspace_id)
        return self._select_blocks(where, params, "workspace_id, zone, order_key, block_id")

    # ============ Snapshots ============

    def _row_to_snapshot(self, row) -> Snapshot:
        return Snapshot(
            snapshot_id=row[0],
            workspace_id=row[1],
            name=row[2],
            blocks=[SnapshotBlock(**item) for item in json.loads(row[3])],
            created_at=row[4]
        )

    def insert_snapshot(self, snapshot: Snapshot) -> Snapshot:
        blocks_json = json.dumps([item.model_dump(mode="json") for item in snapshot.blocks])
        self._conn().execute("""
            INSERT INTO snapshots (snapshot_id, workspace_id, name, blocks, created_at)
            VALUES (?, ?, ?, ?, ?)
        """, [snapshot.snapshot_id, snapshot.workspace_id, snapshot.name, blocks_json, snapshot.created_at])
        return snapshot

    def get_snapshot(self, snapshot_id: str) -> Optional[Snapshot]:
        result = self._conn().execute("""
            SELECT snapshot_id, workspace_id, name, blocks, created_at
            FROM snapshots
            WHERE snapshot_id = ?
        """, [snapshot_id]).fetchone()
        return self._row_to_snapshot(result) if result else None

    def list_snapshots(self, workspace_id: str) -> List[Snapshot]:
        results = self._conn().execute("""
            SELECT snapshot_id, workspace_id, name, blocks, created_at
            FROM snapshots
            WHERE workspace_id = ?
            ORDER BY created_at DESC, snapshot_id
        """, [workspace_id]).fetchall()
        return [self._row_to_snapshot(row) for row in results]

    def rename_snapshot(self, snapshot_id: str, name: str) -> None:
        self._conn().execute(
            "UPDATE snapshots SET name = ? WHERE snapshot_id = ?",
            [name, snapshot_id]
        )

    def delete_snapshot(self, snapshot_id: str) -> bool:
        deleted = self._conn().execute(
            "DELETE FROM snapshots WHERE snapshot_id = ? RETURNING snapshot_id",
            [snapshot_id]
        ).fetchall()
        return bool(deleted)

    def delete_workspace_snapshots(self, workspace_id: str) -> int:
        deleted = self._conn().execute(
            "DELETE FROM snapshots WHERE workspace_id = ? RETURNING snapshot_id",
            [workspace_id]
        ).fetchall()
        return len(deleted)

    # ============ Generations ============

    def log_generation(
        self,
        agent_name: str,
        messages: str,
        model_name: str,
        raw_response: str,
        system_prompt: Optional[str] = None,
        success: bool = True,
        error_message: Optional[str] = None,
        execution_time_ms: Optional[int] = None,
        workspace_id: Optional[str] = None,
        block_id: Optional[str] = None
    ) -> Optional[int]:
        """
        Log a model call to the database for reproducibility.

        Args:
            agent_name: Name of the agent that made the call
            messages: JSON-encoded message list sent to the model
            model_name: Model used
            raw_response: Text returned by the model (empty on failure)
            system_prompt: System prompt sent alongside the messages
            success: Whether the call succeeded
            error_message: Error description on failure
            execution_time_ms: Wall-clock duration of the call
            workspace_id: Related workspace (optional)
            block_id: Related block (optional)

        Returns:
            The generation id
        """
        result = self._conn().execute("""
            INSERT INTO generations (
                agent_name, workspace_id, block_id, system_prompt, messages,
                model_name, raw_response, success, error_message, execution_time_ms
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING generation_id
        """, [
            agent_name, workspace_id, block_id, system_prompt, messages,
            model_name, raw_response, success, error_message, execution_time_ms
        ]).fetchone()
        return result[0] if result else None

    def get_generations(
        self,
        workspace_id: Optional[str] = None,
        agent_name: Optional[str] = None,
        success_only: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict]:
        """
        Retrieve logged model calls, newest first.

        Args:
            workspace_id: Filter by workspace (optional)
            agent_name: Filter by agent name (optional)
            success_only: Only return successful calls
            limit: Limit number of results

        Returns:
            List of generation records
        """
        query = """
            SELECT generation_id, agent_name, workspace_id, block_id, system_prompt,
                   messages, model_name, raw_response, success, error_message,
                   execution_time_ms, called_at
            FROM generations
            WHERE 1=1
        """
        params = []

        if workspace_id:
            query += " AND workspace_id = ?"
            params.append(workspace_id)

        if agent_name:
            query += " AND agent_name = ?"
            params.append(agent_name)

        if success_only:
            query += " AND success = true"

        query += " ORDER BY called_at DESC, generation_id DESC"

        if limit:
            query += f" LIMIT {int(limit)}"

        results = self._conn().execute(query, params).fetchall()

        return [
            {
                "generation_id": row[0],
                "agent_name": row[1],
                "workspace_id": row[2],
                "block_id": row[3],
                "system_prompt": row[4],
                "messages": row[5],
                "model_name": row[6],
                "raw_response": row[7],
                "success": row[8],
                "error_message": row[9],
                "execution_time_ms": row[10],
                "called_at": row[11]
            }
            for row in results
        ]
