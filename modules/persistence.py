"""
Persistence gateway: every write the relay makes to the document store goes through here.

Store layout (read by the dashboard; keep stable):

	patients/{patientId}                          PatientRecord
	patients/{patientId}/height                   latest height in meters
	patients/{patientId}/skeletal_data/{epochMs}  {joint: {x, y, z, confidence}}
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from modules.store.base import DocumentStore, StoreError, join_path, safe_key

logger = logging.getLogger(__name__)

PATIENTS_ROOT = "patients"
SKELETAL_SUBPATH = "skeletal_data"


class DuplicatePatientError(ValueError):
	def __init__(self, name: str, existing_id: str) -> None:
		super().__init__(f"Patient named {name!r} already exists ({existing_id})")
		self.name = name
		self.existing_id = existing_id


class PatientIdCollisionError(ValueError):
	"""Another registration already produced this id (same gender/age/initials in the same minute)."""

	def __init__(self, patient_id: str) -> None:
		super().__init__(f"Patient id {patient_id} is already taken; retry in a minute")
		self.patient_id = patient_id


def _iso(t: float) -> str:
	return datetime.fromtimestamp(float(t), tz=timezone.utc).isoformat()


@dataclass(frozen=True)
class PatientRecord:
	name: str
	age: int
	gender: str
	height: Optional[float]
	created_at: float
	updated_at: float

	def to_dict(self) -> Dict[str, Any]:
		return {
			"name": self.name,
			"age": int(self.age),
			"gender": self.gender,
			"height": self.height,
			"createdAt": _iso(self.created_at),
			"updatedAt": _iso(self.updated_at),
		}


def generate_patient_id(name: str, age: int, gender: str, now: Optional[datetime] = None) -> str:
	"""
	genderInitial + 2-digit age + first two letters of the name + creation minute.

	Deterministic for identical inputs within the same minute:
	generate_patient_id("Alice", 30, "Female", datetime(2026, 3, 1, 9, 5)) == "F30AL202603010905"
	"""
	name_s = (name or "").strip()
	gender_s = (gender or "").strip()
	if not name_s:
		raise ValueError("name is required")
	if not gender_s:
		raise ValueError("gender is required")
	age_i = int(age)
	if age_i < 0:
		raise ValueError("age must be non-negative")
	ts = (now or datetime.now(timezone.utc)).strftime("%Y%m%d%H%M")
	return safe_key(f"{gender_s[0].upper()}{age_i:02d}{name_s[:2].upper().ljust(2)}{ts}")


class PersistenceGateway:
	def __init__(self, store: DocumentStore, timeout_s: float = 5.0) -> None:
		self.store = store
		self._timeout_s = float(timeout_s) if timeout_s > 0 else 5.0
		self._last_ts_ms: Dict[str, int] = {}
		# Serializes the duplicate-name scan and the insert of each registration.
		self._register_lock = asyncio.Lock()
		self.stats: Dict[str, Any] = {
			"writes_ok": 0,
			"writes_failed": 0,
			"last_error": None,
			"last_error_retryable": None,
		}

	async def _put(self, path: str, value: Any) -> None:
		try:
			await asyncio.wait_for(self.store.put(path, value), timeout=self._timeout_s)
		except asyncio.TimeoutError as e:
			raise StoreError(f"PUT {path} timed out after {self._timeout_s:.1f}s", retryable=True) from e

	async def _get(self, path: str) -> Any:
		try:
			return await asyncio.wait_for(self.store.get(path), timeout=self._timeout_s)
		except asyncio.TimeoutError as e:
			raise StoreError(f"GET {path} timed out after {self._timeout_s:.1f}s", retryable=True) from e

	async def _write(self, path: str, value: Any) -> bool:
		try:
			await self._put(path, value)
		except StoreError as e:
			self._record_failure(e)
			logger.warning("[Store] write %s failed (retryable=%s): %s", path, e.retryable, e)
			return False
		except Exception as e:
			self._record_failure(StoreError(repr(e), retryable=False))
			logger.error("[Store] write %s failed: %r", path, e)
			return False
		self.stats["writes_ok"] = int(self.stats["writes_ok"]) + 1
		return True

	def _record_failure(self, err: StoreError) -> None:
		self.stats["writes_failed"] = int(self.stats["writes_failed"]) + 1
		self.stats["last_error"] = str(err)
		self.stats["last_error_retryable"] = bool(err.retryable)

	def next_timestamp_ms(self, patient_id: str, now: Optional[float] = None) -> int:
		"""Epoch milliseconds, strictly increasing per patient so snapshot keys never collide."""
		t_ms = int((time.time() if now is None else float(now)) * 1000.0)
		last = self._last_ts_ms.get(patient_id)
		if last is not None and t_ms <= last:
			t_ms = last + 1
		self._last_ts_ms[patient_id] = t_ms
		return t_ms

	async def write_height(self, patient_id: str, value: float) -> bool:
		ok = await self._write(join_path(PATIENTS_ROOT, safe_key(patient_id), "height"), round(float(value), 2))
		if ok:
			logger.info("[Store] height updated for %s: %.2f m", patient_id, float(value))
		return ok

	async def write_skeletal_snapshot(self, patient_id: str, timestamp: int, joints: Dict[str, Dict[str, Any]]) -> bool:
		path = join_path(PATIENTS_ROOT, safe_key(patient_id), SKELETAL_SUBPATH, str(int(timestamp)))
		return await self._write(path, joints)

	async def list_patients(self) -> List[Dict[str, Any]]:
		raw = await self._get(PATIENTS_ROOT)
		if not isinstance(raw, dict):
			return []
		out: List[Dict[str, Any]] = []
		for pid, rec in raw.items():
			if not isinstance(rec, dict):
				continue
			item = {k: v for k, v in rec.items() if k != SKELETAL_SUBPATH}
			item["id"] = pid
			out.append(item)
		out.sort(key=lambda r: str(r.get("createdAt") or ""))
		return out

	async def find_by_name(self, name: str) -> Optional[Tuple[str, Dict[str, Any]]]:
		"""Linear scan of every patient record, comparing names case-insensitively."""
		wanted = (name or "").strip().casefold()
		if not wanted:
			return None
		for rec in await self.list_patients():
			if str(rec.get("name") or "").strip().casefold() == wanted:
				return str(rec["id"]), rec
		return None

	async def create_patient(
		self,
		name: str,
		age: int,
		gender: str,
		height: Optional[float] = None,
		now: Optional[datetime] = None,
	) -> Tuple[str, Dict[str, Any]]:
		"""
		Register a patient. Raises DuplicatePatientError / PatientIdCollisionError before
		anything is written, StoreError if the store cannot be read or written.
		"""
		name_s = (name or "").strip()
		created = now or datetime.now(timezone.utc)
		patient_id = generate_patient_id(name_s, age, gender, now=created)

		t = created.timestamp()
		record = PatientRecord(
			name=name_s,
			age=int(age),
			gender=(gender or "").strip(),
			height=round(float(height), 2) if height is not None else None,
			created_at=t,
			updated_at=t,
		).to_dict()

		async with self._register_lock:
			existing = await self.find_by_name(name_s)
			if existing is not None:
				raise DuplicatePatientError(name_s, existing[0])
			if await self._get(join_path(PATIENTS_ROOT, patient_id)) is not None:
				raise PatientIdCollisionError(patient_id)
			try:
				await self._put(join_path(PATIENTS_ROOT, patient_id), record)
			except StoreError as e:
				self._record_failure(e)
				logger.warning("[Store] create patient %s failed (retryable=%s): %s", patient_id, e.retryable, e)
				raise
		self.stats["writes_ok"] = int(self.stats["writes_ok"]) + 1
		logger.info("[Store] patient %s registered as %s", name_s, patient_id)
		return patient_id, record
