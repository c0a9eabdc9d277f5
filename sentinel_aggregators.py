"""
Sentinel-Vision — Module Aggregators
=====================================
Turns one tick's detections into the metrics and alerts of the active
monitoring module.

Every function here is pure: inputs are never mutated, there is no
randomness, and identical inputs give identical outputs. Safe to call
concurrently for different modules.

Class filters (applied everywhere):
  person        score > 0.5
  anything else score > 0.4

Rounding is half-up (2.5 → 3), matching how rates are displayed.
"""

from __future__ import annotations

from typing import Optional, Sequence

from sentinel_types import (
    ClassroomAnalysis,
    ComplianceAnalysis,
    Detection,
    ExamAnalysis,
    FaceDetection,
    FireSmokeAnalysis,
    Frame,
    ModuleAnalysisResult,
    MonitoringModule,
    OccupancyAnalysis,
    SafetyAnalysis,
    SafetyHazards,
    SeatingCounts,
)
from sentinel_utils import detect_fire_and_smoke
from sentinel_utils_core import clamp, round_half_up

PERSON_MIN_SCORE = 0.5
OBJECT_MIN_SCORE = 0.4

MIN_ASSUMED_CAPACITY = 20
BENCH_SEATS = 3
COUCH_SEATS = 4

SAFETY_EQUIPMENT_LABEL = "fire hydrant"
BAG_LABEL = "backpack"


def count_label(detections: Sequence[Detection], label: str) -> int:
    """Number of detections of ``label`` above that class's score floor."""
    floor = PERSON_MIN_SCORE if label == "person" else OBJECT_MIN_SCORE
    return sum(1 for d in detections if d.label == label and d.score > floor)


def _face_ratio(faces: int, people: int) -> float:
    return faces / people if people > 0 else 0.0


# ═══════════════════════════════════════════════════════════════
# Classroom behaviour
# ═══════════════════════════════════════════════════════════════

def analyze_for_classroom(
    detections: Sequence[Detection],
    faces: Sequence[FaceDetection],
) -> ClassroomAnalysis:
    people = count_label(detections, "person")
    phones = count_label(detections, "cell phone")
    books = count_label(detections, "book")
    laptops = count_label(detections, "laptop")

    student_count = max(people, len(faces))
    face_ratio = _face_ratio(len(faces), student_count)

    attention_level = 0.0
    if student_count > 0:
        distraction_penalty = phones * 10 + laptops * 5
        attention_level = clamp(face_ratio * 85 - distraction_penalty, 0, 100)

    alerts = []
    if phones > 0:
        alerts.append(f"{phones} mobile phone(s) detected")
    if laptops > 2:
        alerts.append("Multiple laptops detected - verify if authorized")
    if student_count > 0 and face_ratio < 0.7:
        alerts.append("Low face detection rate - students may not be facing camera")

    return ClassroomAnalysis(
        student_count=student_count,
        attention_level=round_half_up(attention_level),
        distractions=phones,
        engagement_items=books,
        face_detection_rate=round_half_up(face_ratio * 100),
        alerts=tuple(alerts),
    )


# ═══════════════════════════════════════════════════════════════
# Exam supervision
# ═══════════════════════════════════════════════════════════════

def analyze_for_exam(
    detections: Sequence[Detection],
    faces: Sequence[FaceDetection],
) -> ExamAnalysis:
    people = count_label(detections, "person")
    phones = count_label(detections, "cell phone")
    books = count_label(detections, "book")
    laptops = count_label(detections, "laptop")
    bags = count_label(detections, BAG_LABEL)

    candidate_count = max(people, len(faces))
    face_ratio = _face_ratio(len(faces), candidate_count)
    gaze_compliance = min(100.0, face_ratio * 95) if candidate_count > 0 else 0.0

    violations = []
    if phones > 0:
        violations.append(f"{phones} unauthorized device(s) detected")
    if books > candidate_count:
        violations.append("Excessive reference materials detected")
    if laptops > 0:
        violations.append(f"{laptops} laptop(s) detected in exam area")
    if bags > 0:
        violations.append("Personal bags detected - should be stored away")
    if candidate_count > 0 and face_ratio < 0.8:
        violations.append("Low gaze compliance - candidates not facing forward")

    return ExamAnalysis(
        candidate_count=candidate_count,
        gaze_compliance=round_half_up(gaze_compliance),
        violations=len(violations),
        prohibited_items=phones + laptops + max(0, books - candidate_count),
        alerts=tuple(violations),
    )


# ═══════════════════════════════════════════════════════════════
# Occupancy monitoring
# ═══════════════════════════════════════════════════════════════

def analyze_for_occupancy(detections: Sequence[Detection]) -> OccupancyAnalysis:
    occupancy = count_label(detections, "person")
    seating = SeatingCounts(
        chairs=count_label(detections, "chair"),
        benches=count_label(detections, "bench"),
        couches=count_label(detections, "couch"),
    )

    total_seats = seating.chairs + seating.benches * BENCH_SEATS + seating.couches * COUCH_SEATS
    max_capacity = max(total_seats, MIN_ASSUMED_CAPACITY)
    occupancy_rate = min(100.0, occupancy / max_capacity * 100)

    alerts = []
    if occupancy_rate > 95:
        alerts.append("Space at maximum capacity")
    elif occupancy_rate > 85:
        alerts.append("Approaching full capacity")
    elif occupancy_rate > 70:
        alerts.append("High occupancy detected")
    if occupancy > max_capacity:
        alerts.append("Occupancy exceeds estimated capacity")

    return OccupancyAnalysis(
        current_occupancy=occupancy,
        max_capacity=max_capacity,
        occupancy_rate=round_half_up(occupancy_rate),
        available_seats=max(0, max_capacity - occupancy),
        seating_detected=seating,
        alerts=tuple(alerts),
    )


# ═══════════════════════════════════════════════════════════════
# Compliance check
# ═══════════════════════════════════════════════════════════════

def analyze_for_compliance(
    detections: Sequence[Detection],
    faces: Sequence[FaceDetection],
) -> ComplianceAnalysis:
    """Mask compliance over faces the mask detector could decide on.

    Uniform compliance is reported as None: there is no clothing
    classifier, so it is never measured and never alerts.
    """
    people_count = max(count_label(detections, "person"), len(faces))

    analyzed = [f for f in faces if f.has_mask is not None]
    masked = sum(1 for f in analyzed if f.has_mask and (f.mask_confidence or 0) > 0.5)
    mask_compliance = masked / len(analyzed) * 100 if analyzed else 0.0

    alerts = []
    if mask_compliance < 85:
        alerts.append(f"Low mask compliance: {round_half_up(mask_compliance)}%")
    if people_count > len(analyzed):
        alerts.append(f"{people_count - len(analyzed)} people without face detection")

    return ComplianceAnalysis(
        people_count=people_count,
        mask_compliance=round_half_up(mask_compliance),
        faces_analyzed=len(analyzed),
        masked_faces=masked,
        violations=len(alerts),
        uniform_compliance=None,
        alerts=tuple(alerts),
    )


# ═══════════════════════════════════════════════════════════════
# Safety detection
# ═══════════════════════════════════════════════════════════════

def analyze_for_safety(
    detections: Sequence[Detection],
    frame: Optional[Frame] = None,
    fire_smoke: Optional[FireSmokeAnalysis] = None,
) -> SafetyAnalysis:
    """Safety status, hazards and alerts.

    Fire/smoke comes from ``fire_smoke`` when given (the engine passes the
    throttled result), otherwise from analysing ``frame``. With neither,
    both are False.
    """
    people = count_label(detections, "person")
    equipment = count_label(detections, SAFETY_EQUIPMENT_LABEL)
    bags = count_label(detections, BAG_LABEL)

    if fire_smoke is None and frame is not None:
        fire_smoke = detect_fire_and_smoke(frame)
    fire_detected = bool(fire_smoke and fire_smoke.fire_detected)
    smoke_detected = bool(fire_smoke and fire_smoke.smoke_detected)

    alerts = []
    system_status = "operational"

    if fire_detected:
        alerts.append("FIRE DETECTED - EMERGENCY EVACUATION REQUIRED!")
        system_status = "emergency"
    if smoke_detected:
        alerts.append("SMOKE DETECTED - POTENTIAL FIRE HAZARD!")
        if system_status == "operational":
            system_status = "warning"

    if people > 10:
        alerts.append(f"High occupancy: {people} people detected")
        if people > 20:
            if system_status == "operational":
                system_status = "crowded"
            alerts.append("Potential crowd safety concern")

    if bags > people:
        alerts.append("Unattended bags detected - security check recommended")
    if equipment == 0:
        alerts.append("No fire safety equipment visible in frame")

    if fire_detected or smoke_detected:
        response_time = "0.1s"
    elif people > 10:
        response_time = "0.5s"
    else:
        response_time = "0.3s"

    return SafetyAnalysis(
        people_count=people,
        system_status=system_status,
        safety_equipment=equipment,
        response_time=response_time,
        fire_detected=fire_detected,
        smoke_detected=smoke_detected,
        potential_hazards=SafetyHazards(
            fire=fire_detected,
            smoke=smoke_detected,
            crowding=people > 15,
            unattended_items=bags > people,
            equipment_missing=equipment == 0,
        ),
        alerts=tuple(alerts),
    )


# ═══════════════════════════════════════════════════════════════
# Dispatch
# ═══════════════════════════════════════════════════════════════

def analyze_for_module(
    module: MonitoringModule,
    detections: Sequence[Detection],
    faces: Sequence[FaceDetection],
    frame: Optional[Frame] = None,
    fire_smoke: Optional[FireSmokeAnalysis] = None,
) -> ModuleAnalysisResult:
    module = MonitoringModule(module)
    if module is MonitoringModule.CLASSROOM:
        return analyze_for_classroom(detections, faces)
    if module is MonitoringModule.EXAM:
        return analyze_for_exam(detections, faces)
    if module is MonitoringModule.OCCUPANCY:
        return analyze_for_occupancy(detections)
    if module is MonitoringModule.COMPLIANCE:
        return analyze_for_compliance(detections, faces)
    return analyze_for_safety(detections, frame=frame, fire_smoke=fire_smoke)
