"""
Background Job Manager for SX Circuit Solves

Runs each V% optimization in its own subprocess so the MCP server stays
responsive and every solve delivers exactly one result file (or one
structured error) when it ends.

Key Features:
- Immediate job_id return; solves queue behind a semaphore (max 3 running)
- Crash recovery via disk-based job metadata (jobs/<id>/job.json)
- Per-job output isolation (params.json, progress.json, sx_results.json, logs)
- psutil liveness checks and termination

Architecture:
    User -> MCP Tool -> start_sx_job() -> Returns job_id immediately
                              |
                    utils/sx_cli.py --job-dir jobs/<id> runs the solve
                              |
    User -> get_job_status(job_id) -> "running, solving V%"
                              |
    User -> get_job_results(job_id) -> sx_results.json contents
"""

import asyncio
import json
import logging
import os
import psutil
import signal
import sys
import time
import uuid
from pathlib import Path
from typing import Optional, Dict, List, Any

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent
SX_CLI_SCRIPT = PROJECT_ROOT / "utils" / "sx_cli.py"

RESULT_FILE = "sx_results.json"


class JobManager:
    """
    Singleton job manager with crash recovery and concurrency control.

    Usage:
        manager = JobManager()

        # Start job
        job = await manager.execute(
            cmd=[sys.executable, "utils/sx_cli.py", "--job-dir", "jobs/abc123"],
            cwd="/path/to/project"
        )

        # Check status
        status = await manager.get_status(job["id"])

        # Get results
        results = await manager.get_results(job["id"])
    """

    _instance = None

    def __new__(cls, *args, **kwargs):
        """Ensure singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, max_concurrent_jobs: int = 3, jobs_base_dir: str = "jobs"):
        """
        Initialize job manager.

        Args:
            max_concurrent_jobs: Maximum number of simultaneously running solves
            jobs_base_dir: Base directory for job workspaces
        """
        # Only initialize once
        if hasattr(self, '_initialized'):
            return

        self.jobs: Dict[str, dict] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self.jobs_dir = Path(jobs_base_dir)
        self.jobs_dir.mkdir(parents=True, exist_ok=True)
        self.semaphore = asyncio.Semaphore(max_concurrent_jobs)
        self.max_concurrent_jobs = max_concurrent_jobs

        # Load existing jobs from disk (crash recovery)
        self._load_existing_jobs()

        # Register signal handlers for cleanup
        self._previous_handlers = {}
        for signum in (signal.SIGTERM, signal.SIGINT):
            self._previous_handlers[signum] = signal.signal(signum, self._signal_handler)

        self._initialized = True
        logger.info(f"JobManager initialized: max_concurrent={max_concurrent_jobs}, jobs_dir={self.jobs_dir}")

    def _load_existing_jobs(self):
        """Recover job metadata from disk, detect stale PIDs."""
        recovered = 0
        stale = 0

        for job_file in self.jobs_dir.glob("*/job.json"):
            try:
                with open(job_file) as f:
                    job = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Failed to load job from {job_file}: {e}")
                continue

            job_id = job.get("id")
            if not job_id:
                continue

            if job.get("status") in ("queued", "starting", "running"):
                pid = job.get("pid")
                if pid and self._is_process_alive(pid):
                    job["status"] = "running"
                    recovered += 1
                    logger.info(f"Recovered running job {job_id} (PID: {pid})")
                else:
                    job["status"] = "failed"
                    job["error"] = "Process terminated (server restart or crash)"
                    job["recovered_at"] = time.time()
                    stale += 1
                    logger.warning(f"Marked stale job {job_id} as failed")
                    self._save_job_metadata(job)

            self.jobs[job_id] = job

        logger.info(f"Job recovery complete: {recovered} running, {stale} stale")

    def _is_process_alive(self, pid: int) -> bool:
        """Check if a process with given PID is still running."""
        try:
            process = psutil.Process(pid)
            return process.is_running() and process.status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False

    def _signal_handler(self, signum, frame):
        """Terminate running solves, then hand the signal to the previous handler."""
        logger.warning(f"Received signal {signum}, terminating running jobs...")
        for job_id, job in self.jobs.items():
            if job["status"] == "running" and "pid" in job:
                try:
                    psutil.Process(job["pid"]).terminate()
                    logger.info(f"Terminated job {job_id} (PID: {job['pid']})")
                except psutil.Error as e:
                    logger.error(f"Failed to terminate job {job_id}: {e}")

        previous = self._previous_handlers.get(signum)
        if callable(previous):
            previous(signum, frame)
        else:
            raise SystemExit(128 + signum)

    async def execute(self, cmd: List[str], cwd: str = ".", env: Optional[Dict[str, str]] = None,
                      job_id: Optional[str] = None) -> dict:
        """
        Queue a command for background execution.

        Returns at once; the subprocess starts when a concurrency slot frees up.

        Args:
            cmd: Command as list (e.g., [sys.executable, "utils/sx_cli.py", "--job-dir", "..."])
            cwd: Working directory for subprocess
            env: Optional environment variables
            job_id: Optional pre-determined job ID (directory must already exist)

        Returns:
            Job metadata dict with id, status ("queued"), command, etc.

        Raises:
            ValueError: If job_id collides or its directory is missing
        """
        if job_id is None:
            job_id = str(uuid.uuid4())[:8]
            job_dir = self.jobs_dir / job_id
            job_dir.mkdir(exist_ok=True)
        else:
            job_dir = self.jobs_dir / job_id
            if job_id in self.jobs:
                raise ValueError(f"Job ID {job_id} already exists in active jobs")
            if not job_dir.exists():
                raise ValueError(f"Job directory {job_dir} must exist when providing custom job_id")

        # Replace {job_id} placeholder in command
        cmd_with_id = [arg.replace("{job_id}", job_id) for arg in cmd]

        job = {
            "id": job_id,
            "command": cmd_with_id,
            "cwd": str(Path(cwd).absolute()),
            "status": "queued",
            "started_at": time.time(),
            "job_dir": str(job_dir.absolute()),
            "env": env or {}
        }
        self.jobs[job_id] = job
        self._save_job_metadata(job)

        logger.info(f"Queued job {job_id}: {' '.join(cmd_with_id)}")

        self._tasks[job_id] = asyncio.create_task(self._run_job(job_id))
        return dict(job)

    async def _run_job(self, job_id: str):
        """Hold a concurrency slot for the whole lifetime of one subprocess."""
        job = self.jobs[job_id]

        try:
            async with self.semaphore:
                proc_env = os.environ.copy()
                proc_env.update(job["env"])

                try:
                    proc = await asyncio.create_subprocess_exec(
                        *job["command"],
                        cwd=job["cwd"],
                        stdout=asyncio.subprocess.PIPE,
                        stderr=asyncio.subprocess.PIPE,
                        env=proc_env
                    )
                except OSError as e:
                    job["status"] = "failed"
                    job["error"] = str(e)
                    job["completed_at"] = time.time()
                    self._save_job_metadata(job)
                    logger.error(f"Failed to start job {job_id}: {e}")
                    return

                job["pid"] = proc.pid
                job["status"] = "running"
                job["running_since"] = time.time()
                self._save_job_metadata(job)
                logger.info(f"Job {job_id} started with PID {proc.pid}")

                await self._monitor_job(job_id, proc)
        finally:
            self._tasks.pop(job_id, None)

    async def _monitor_job(self, job_id: str, proc: asyncio.subprocess.Process):
        """Wait for the subprocess, capture its logs and record the outcome."""
        job = self.jobs[job_id]
        job_dir = Path(job["job_dir"])

        stdout_path = job_dir / "stdout.log"
        stderr_path = job_dir / "stderr.log"

        try:
            # Drain stdout/stderr to files (prevents pipe buffer overflow)
            stdout_data, stderr_data = await proc.communicate()

            with open(stdout_path, "wb") as f:
                f.write(stdout_data)
            with open(stderr_path, "wb") as f:
                f.write(stderr_data)

            exit_code = proc.returncode

            # terminate_job may already have set the final status
            if job["status"] == "running":
                job["status"] = "completed" if exit_code == 0 else "failed"
            job["exit_code"] = exit_code
            job.setdefault("completed_at", time.time())

            if job["status"] == "failed":
                job["error"] = self._read_error(job_dir) or stderr_data.decode(errors="replace")[-500:]

            logger.info(f"Job {job_id} {job['status']} with exit code {exit_code}")

        except OSError as e:
            job["status"] = "failed"
            job["error"] = f"Monitoring error: {str(e)}"
            job["completed_at"] = time.time()
            logger.error(f"Job {job_id} monitoring failed: {e}")

        finally:
            self._save_job_metadata(job)

    def _read_error(self, job_dir: Path) -> Optional[str]:
        """Structured error message written by the job runner, if any."""
        result_path = job_dir / RESULT_FILE
        if not result_path.exists():
            return None
        try:
            with open(result_path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError):
            return None
        if data.get("status") != "error":
            return None
        return f"{data.get('error_type', 'Error')}: {data.get('message', '')}"

    def _save_job_metadata(self, job: dict):
        """Save job metadata to disk."""
        metadata_file = Path(job["job_dir"]) / "job.json"

        try:
            with open(metadata_file, "w") as f:
                json.dump(job, f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save metadata for job {job['id']}: {e}")

    async def get_status(self, job_id: str) -> dict:
        """
        Get job status with progress hints.

        Args:
            job_id: Job identifier

        Returns:
            Dict with status, progress, elapsed_time, etc.
        """
        if job_id not in self.jobs:
            return {"error": f"Job {job_id} not found"}

        job = self.jobs[job_id]

        # Dead process without a monitor (e.g. recovered after a restart)
        if job["status"] == "running" and job_id not in self._tasks:
            pid = job.get("pid")
            if pid and not self._is_process_alive(pid):
                logger.warning(f"Job {job_id}: Process {pid} terminated unexpectedly")
                job["status"] = "failed"
                job["error"] = "Process terminated unexpectedly (subprocess crash)"
                job["completed_at"] = time.time()
                self._save_job_metadata(job)

        elapsed = time.time() - job["started_at"]
        progress = self._parse_progress(job["job_dir"])

        status_response = {
            "job_id": job_id,
            "status": job["status"],
            "elapsed_time_seconds": round(elapsed, 1),
            "started_at": job["started_at"]
        }

        if progress:
            status_response["progress"] = progress

        if job["status"] == "completed":
            status_response["completed_at"] = job.get("completed_at")
            status_response["total_time_seconds"] = round(job.get("completed_at", time.time()) - job["started_at"], 1)

        if job["status"] == "failed":
            status_response["error"] = job.get("error", "Unknown error")
            status_response["exit_code"] = job.get("exit_code")

        return status_response

    def _parse_progress(self, job_dir: str) -> Optional[dict]:
        """
        Parse progress from progress.json written by the job runner.

        progress.json format:
        {
            "stage": "Searching V%",
            "current": 20,
            "total": 100,
            "timestamp": 1234567890.123
        }
        """
        progress_file = Path(job_dir) / "progress.json"
        if not progress_file.exists():
            return None

        try:
            with open(progress_file, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            # Runner may be mid-write
            logger.debug(f"Failed to parse progress.json: {e}")
            return None

        return {
            "percent": data.get("current", 0),
            "total": data.get("total", 100),
            "message": data.get("stage", ""),
            "timestamp": data.get("timestamp")
        }

    async def get_results(self, job_id: str) -> dict:
        """
        Get results from completed job.

        Args:
            job_id: Job identifier

        Returns:
            Dict with job_id, status, results (parsed sx_results.json), and log file paths
        """
        if job_id not in self.jobs:
            return {"error": f"Job {job_id} not found"}

        job = self.jobs[job_id]
        job_dir = Path(job["job_dir"])

        if job["status"] != "completed":
            return {
                "error": f"Job {job_id} not completed (status: {job['status']})",
                "job_id": job_id,
                "status": job["status"]
            }

        response = {
            "job_id": job_id,
            "status": "completed",
            "total_time_seconds": round(job.get("completed_at", time.time()) - job["started_at"], 1),
            "stdout_file": str(job_dir / "stdout.log"),
            "stderr_file": str(job_dir / "stderr.log")
        }

        result_path = job_dir / RESULT_FILE
        results = None
        if result_path.exists():
            try:
                with open(result_path) as f:
                    results = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Failed to parse {result_path}: {e}")

        if results is not None:
            response["results"] = results
            response["result_file"] = str(result_path)
        else:
            response["warning"] = f"No {RESULT_FILE} found. Check stdout/stderr logs."

        return response

    async def list_jobs(self, status_filter: Optional[str] = None, limit: int = 20) -> dict:
        """
        List all jobs with optional status filter.

        Args:
            status_filter: Filter by status ("queued", "running", "completed",
                "failed", "terminated", or None for all)
            limit: Maximum number of jobs to return

        Returns:
            Dict with jobs list
        """
        jobs_list = []

        for job_id, job in sorted(self.jobs.items(), key=lambda x: x[1].get("started_at", 0), reverse=True):
            if status_filter and job["status"] != status_filter:
                continue

            jobs_list.append({
                "id": job_id,
                "status": job["status"],
                "mode": job.get("mode"),
                "started_at": job["started_at"],
                "elapsed_time_seconds": round(time.time() - job["started_at"], 1) if job["status"] == "running" else None
            })

            if len(jobs_list) >= limit:
                break

        return {
            "jobs": jobs_list,
            "total": len(jobs_list),
            "filter": status_filter,
            "running_jobs": sum(1 for j in self.jobs.values() if j["status"] == "running"),
            "queued_jobs": sum(1 for j in self.jobs.values() if j["status"] == "queued"),
            "max_concurrent": self.max_concurrent_jobs
        }

    async def terminate_job(self, job_id: str) -> dict:
        """
        Terminate a queued or running job.

        Args:
            job_id: Job identifier

        Returns:
            Dict with termination status
        """
        if job_id not in self.jobs:
            return {"error": f"Job {job_id} not found"}

        job = self.jobs[job_id]

        if job["status"] == "queued":
            task = self._tasks.pop(job_id, None)
            if task is not None:
                task.cancel()
            job["status"] = "terminated"
            job["completed_at"] = time.time()
            self._save_job_metadata(job)
            logger.info(f"Cancelled queued job {job_id}")
            return {
                "job_id": job_id,
                "status": "terminated",
                "message": f"Job {job_id} cancelled before it started"
            }

        if job["status"] != "running":
            return {"error": f"Job {job_id} is not running (status: {job['status']})"}

        pid = job.get("pid")
        if not pid:
            return {"error": f"Job {job_id} has no PID recorded"}

        try:
            process = psutil.Process(pid)
            job["status"] = "terminated"
            job["completed_at"] = time.time()
            process.terminate()

            # Wait briefly for graceful termination
            await asyncio.sleep(1)

            if process.is_running():
                process.kill()

            self._save_job_metadata(job)
            logger.info(f"Terminated job {job_id} (PID: {pid})")

            return {
                "job_id": job_id,
                "status": "terminated",
                "message": f"Job {job_id} terminated successfully"
            }

        except psutil.NoSuchProcess:
            job["status"] = "failed"
            job["error"] = "Process no longer exists"
            self._save_job_metadata(job)
            return {"error": f"Process {pid} no longer exists"}

        except psutil.Error as e:
            logger.error(f"Failed to terminate job {job_id}: {e}")
            return {"error": f"Failed to terminate: {str(e)}"}


async def start_sx_job(params: Dict[str, Any], mode: str = "optimize") -> dict:
    """
    Write params.json into a fresh job directory and launch the job runner.

    Args:
        params: Keyword arguments for optimize_sx_circuit / simulate_sx_circuit
        mode: "optimize" (V% search) or "simulate" (fixed V%, needs v_percent)

    Returns:
        Job metadata with id and status
    """
    if mode not in ("optimize", "simulate"):
        raise ValueError(f"Unknown job mode '{mode}'. Must be 'optimize' or 'simulate'")

    manager = JobManager()
    job_id = str(uuid.uuid4())[:8]
    job_dir = manager.jobs_dir / job_id
    job_dir.mkdir(parents=True, exist_ok=True)

    with open(job_dir / "params.json", "w") as f:
        json.dump({"mode": mode, **params}, f, indent=2)

    cmd = [sys.executable, str(SX_CLI_SCRIPT), "--job-dir", str(job_dir.absolute())]
    job = await manager.execute(cmd=cmd, cwd=str(PROJECT_ROOT), job_id=job_id)

    # Recorded for list_jobs
    manager.jobs[job_id]["mode"] = mode
    manager._save_job_metadata(manager.jobs[job_id])

    logger.info(f"Started SX {mode} job: {job_id}")
    return job
