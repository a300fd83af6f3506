"""Resource calls used by the reception, doctor and hospital chief front-ends.

These are call contracts only. Bodies are passed through as decoded JSON;
mapping FHIR resources onto view models is left to the rendering layer.
"""

from __future__ import annotations

from typing import Any

from .http import RequestPipeline


class ReceptionApi:
    """Patients, practitioners and encounters as seen by reception staff."""

    def __init__(self, pipeline: RequestPipeline) -> None:
        self._pipeline = pipeline

    async def get_patients(self) -> Any:
        return await self._pipeline.execute("/patients")

    async def create_patient(self, patient: dict[str, Any]) -> Any:
        return await self._pipeline.execute("/patients", "POST", patient)

    async def delete_patient(self, patient_id: int | str) -> Any:
        return await self._pipeline.execute(f"/patients/{patient_id}", "DELETE")

    async def get_practitioners(self) -> Any:
        return await self._pipeline.execute("/practitioners")

    async def create_encounter(
        self, patient_id: int | str, practitioner_id: str, start_time: str
    ) -> Any:
        """Book an encounter.

        Args:
            patient_id: Reception patient identifier
            practitioner_id: FHIR practitioner identifier
            start_time: RFC 3339 start timestamp
        """
        return await self._pipeline.execute(
            "/encounters",
            "POST",
            {
                "patient_id": patient_id,
                "practitioner_id": practitioner_id,
                "start_time": start_time,
            },
        )

    async def get_encounters(self) -> Any:
        return await self._pipeline.execute("/encounters")

    async def update_encounter_status(self, encounter_id: str, status: str) -> Any:
        return await self._pipeline.execute(
            f"/encounters/{encounter_id}", "PATCH", {"status": status}
        )


class DoctorApi:
    """Encounter work queue for a practitioner."""

    def __init__(self, pipeline: RequestPipeline) -> None:
        self._pipeline = pipeline

    async def get_practitioners(self) -> Any:
        return await self._pipeline.execute("/practitioners")

    async def get_encounters_by_practitioner(self, practitioner_id: str) -> Any:
        return await self._pipeline.execute(f"/encounters/{practitioner_id}")

    async def update_encounter_status(self, encounter_id: str, status: str) -> Any:
        return await self._pipeline.execute(
            f"/encounters/{encounter_id}", "PATCH", {"status": status}
        )


class ChiefApi:
    """Staff administration for the hospital chief.

    Practitioners are managed directly on the FHIR server, so this API takes
    a second pipeline rooted at the FHIR base address.
    """

    def __init__(
        self, pipeline: RequestPipeline, fhir_pipeline: RequestPipeline
    ) -> None:
        self._pipeline = pipeline
        self._fhir = fhir_pipeline

    async def get_patients(self) -> Any:
        return await self._pipeline.execute("/patients")

    async def get_practitioners(self) -> list[dict[str, Any]]:
        """Return the Practitioner resources from the FHIR search bundle."""
        bundle = await self._fhir.execute("/Practitioner")
        if not isinstance(bundle, dict):
            return []
        return [
            entry["resource"]
            for entry in bundle.get("entry") or []
            if isinstance(entry, dict) and "resource" in entry
        ]

    async def create_practitioner(self, resource: dict[str, Any]) -> Any:
        """Create a Practitioner resource and return the server's copy."""
        return await self._fhir.execute("/Practitioner", "POST", resource)
