"""
Payer policy library and the resolver the generator uses to look policies up.

Scenario patterns reference policies by id. Validation rejects ids that do
not resolve here, and the pattern injector attaches the resolved fix
guidance to the claims it denies.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class PolicyDefinition:
    id: str
    name: str
    mode: str
    topic: str
    logic_type: str
    source: str
    description: str
    clinical_rationale: str
    common_mistake: str
    fix_guidance: str
    procedure_codes: tuple[str, ...] = ()
    modifiers: tuple[str, ...] = ()


@dataclass(frozen=True)
class PolicyGuidance:
    policy_id: str
    fix_guidance: str
    common_mistake: str


POLICIES = [
    # ── Modifiers ──
    PolicyDefinition(
        id="POL-MOD-25",
        name="E/M Modifier 25 Required",
        mode="Edit",
        topic="Modifiers",
        logic_type="Same-Day Service",
        source="CMS/AMA CPT Guidelines",
        description="Evaluation and Management (E/M) services performed on the same day as a procedure require modifier 25 to indicate a significant, separately identifiable service.",
        clinical_rationale="When an E/M service is provided on the same day as a procedure, the E/M must be significant and separately identifiable to warrant separate payment.",
        common_mistake="Billing E/M service on the same day as a procedure without adding modifier 25.",
        fix_guidance="Add modifier 25 to the E/M code when the service is significant and separately identifiable from the procedure performed the same day.",
        procedure_codes=("99213", "99214", "99215", "99203", "99204", "99205"),
        modifiers=("25",),
    ),
    PolicyDefinition(
        id="POL-MOD-59",
        name="Modifier 59 Distinct Procedural Service",
        mode="Edit",
        topic="Modifiers",
        logic_type="Bundling Override",
        source="CMS/AMA CPT Guidelines",
        description="Modifier 59 indicates that a procedure or service was distinct or independent from other services performed on the same day.",
        clinical_rationale="Used to indicate that a procedure is separate from another procedure that would normally be bundled. Should only be used when no other modifier is appropriate.",
        common_mistake="Using modifier 59 when services are not truly distinct or when a more specific X-modifier should be used.",
        fix_guidance="Use modifier 59 only when services are truly distinct. Consider XE, XS, XP or XU as more specific alternatives.",
        modifiers=("59", "XE", "XP", "XS", "XU"),
    ),
    PolicyDefinition(
        id="POL-MOD-50",
        name="Bilateral Procedure Modifier",
        mode="Edit",
        topic="Modifiers",
        logic_type="Bilateral Service",
        source="CMS/AMA CPT Guidelines",
        description="Modifier 50 indicates a procedure was performed bilaterally during the same operative session.",
        clinical_rationale="Some payers require modifier 50, others require bilateral claims as two line items with RT/LT modifiers.",
        common_mistake="Billing bilateral procedures without modifier 50 or without proper RT/LT designation.",
        fix_guidance="Add modifier 50 for bilateral procedures or use RT and LT modifiers on separate lines depending on payer requirements.",
        modifiers=("50", "RT", "LT"),
    ),
    PolicyDefinition(
        id="POL-MOD-76",
        name="Repeat Procedure Modifier",
        mode="Edit",
        topic="Modifiers",
        logic_type="Repeat Service",
        source="CMS/AMA CPT Guidelines",
        description="Modifier 76 indicates a procedure was repeated by the same physician on the same day.",
        clinical_rationale="Modifier 76 indicates the repeated service is medically necessary and not a duplicate billing error.",
        common_mistake="Billing the same procedure multiple times without modifier 76 or 77.",
        fix_guidance="Add modifier 76 when the same physician repeats the procedure, or modifier 77 when a different physician does.",
        modifiers=("76", "77"),
    ),
    # ── Authorization ──
    PolicyDefinition(
        id="POL-AUTH-PROC",
        name="Prior Authorization Required",
        mode="Edit",
        topic="Authorization",
        logic_type="Prior Authorization",
        source="Payer Policy",
        description="Certain high-cost procedures require prior authorization before the service is rendered.",
        clinical_rationale="Prior authorization ensures medical necessity and appropriate utilization of high-cost services.",
        common_mistake="Performing services requiring prior authorization without obtaining approval first.",
        fix_guidance="Verify prior authorization requirements before scheduling services and include the authorization number on the claim.",
        procedure_codes=("27447", "27446", "70553", "72148", "20610", "64483"),
    ),
    PolicyDefinition(
        id="POL-AUTH-MRI",
        name="MRI Prior Authorization",
        mode="Edit",
        topic="Authorization",
        logic_type="Prior Authorization",
        source="Payer Policy",
        description="MRI procedures require prior authorization to ensure medical necessity.",
        clinical_rationale="MRI is a high-cost imaging service; prior authorization may identify less costly alternatives.",
        common_mistake="Performing MRI without prior authorization or using incorrect authorization number.",
        fix_guidance="Obtain prior authorization before scheduling MRI. Include authorization number on claim submission.",
        procedure_codes=("70551", "70552", "70553", "72141", "72146", "72148", "72156", "72157", "73221", "73721"),
    ),
    # ── Documentation ──
    PolicyDefinition(
        id="POL-DOC-PT-CAP",
        name="Physical Therapy Documentation Requirements",
        mode="Edit",
        topic="Documentation",
        logic_type="Therapy Cap",
        source="CMS Medicare",
        description="Physical therapy services exceeding therapy caps require KX modifier and supporting documentation.",
        clinical_rationale="Medicare therapy caps require additional documentation for services exceeding the threshold.",
        common_mistake="Exceeding therapy cap without KX modifier or without documented medical necessity.",
        fix_guidance="When approaching the therapy cap, document medical necessity and add the KX modifier.",
        procedure_codes=("97110", "97112", "97116", "97140", "97530", "97535", "97542"),
        modifiers=("KX", "GO", "GP"),
    ),
    PolicyDefinition(
        id="POL-DOC-MEDICAL-NECESSITY",
        name="Medical Necessity Documentation",
        mode="Edit",
        topic="Documentation",
        logic_type="Medical Necessity",
        source="CMS/Payer Policy",
        description="Services must have documented medical necessity to support the diagnosis codes billed.",
        clinical_rationale="Documentation must support why the service was needed for the patient's condition.",
        common_mistake="Insufficient documentation to support medical necessity of services rendered.",
        fix_guidance="Ensure documentation clearly articulates the medical reason for services and links to appropriate diagnosis codes.",
    ),
    # ── Bundling ──
    PolicyDefinition(
        id="POL-BUNDLE-INJECT",
        name="Injection Bundling Edits",
        mode="Edit",
        topic="Bundling",
        logic_type="CCI Bundling",
        source="CMS NCCI Edits",
        description="Certain injection services are bundled and should not be billed separately.",
        clinical_rationale="Injection administration codes are often included in the primary procedure.",
        common_mistake="Billing injection administration codes separately when included in primary procedure.",
        fix_guidance="Review NCCI edits for bundling relationships. Use modifier 59 or X-modifiers only when services are truly distinct.",
        procedure_codes=("20610", "20611", "96372", "96374", "96375"),
    ),
    PolicyDefinition(
        id="POL-BUNDLE-SURGERY",
        name="Surgical Global Period Bundling",
        mode="Edit",
        topic="Bundling",
        logic_type="Global Period",
        source="CMS Medicare",
        description="Services within the surgical global period are included in the surgical fee.",
        clinical_rationale="The global surgical package includes pre-operative, intra-operative and post-operative care for a defined period.",
        common_mistake="Billing E/M or other services during the global period without appropriate modifier.",
        fix_guidance="Use modifier 24 (unrelated E/M) or modifier 79 (unrelated procedure) when services are not part of the surgical follow-up.",
    ),
    # ── Place of service ──
    PolicyDefinition(
        id="POL-POS-TELEHEALTH",
        name="Telehealth Place of Service",
        mode="Edit",
        topic="Place of Service",
        logic_type="Telehealth",
        source="CMS Telehealth Policy",
        description="Telehealth services must use place of service 02 or 10.",
        clinical_rationale="Correct place of service ensures appropriate reimbursement and telehealth compliance.",
        common_mistake="Using office place of service (11) for telehealth visits or omitting telehealth modifier.",
        fix_guidance="Use POS 02 or POS 10 with modifier 95 or GT.",
        modifiers=("95", "GT"),
    ),
    PolicyDefinition(
        id="POL-POS-FACILITY",
        name="Facility vs Non-Facility Place of Service",
        mode="Edit",
        topic="Place of Service",
        logic_type="POS Validation",
        source="CMS/Payer Policy",
        description="Place of service must reflect where services were rendered to ensure correct payment rate.",
        clinical_rationale="Facility and non-facility rates differ significantly.",
        common_mistake="Using a place of service code that does not match where service was rendered.",
        fix_guidance="Verify place of service matches the actual location: 11 office, 21 inpatient hospital, 22 outpatient hospital.",
    ),
    # ── Coding ──
    PolicyDefinition(
        id="POL-CODE-SPECIFICITY",
        name="Diagnosis Code Specificity",
        mode="Informational",
        topic="Coding",
        logic_type="Code Specificity",
        source="ICD-10-CM Guidelines",
        description="ICD-10 diagnosis codes must be coded to the highest specificity supported by documentation.",
        clinical_rationale="Specific diagnosis codes may be required for medical necessity determination.",
        common_mistake="Using unspecified diagnosis codes when documentation supports more specific codes.",
        fix_guidance="Select the most specific ICD-10 code supported by documentation.",
    ),
    PolicyDefinition(
        id="POL-CODE-DX-PROC",
        name="Diagnosis-Procedure Mismatch",
        mode="Edit",
        topic="Coding",
        logic_type="DX-Procedure Match",
        source="LCD/NCD Policies",
        description="Procedure codes must be supported by diagnosis codes that establish medical necessity.",
        clinical_rationale="The diagnosis must support why the procedure was medically necessary.",
        common_mistake="Billing procedures with diagnosis codes that do not support medical necessity.",
        fix_guidance="Ensure primary diagnosis code directly relates to and supports the procedure performed.",
    ),
    # ── Frequency ──
    PolicyDefinition(
        id="POL-FREQ-E&M",
        name="E/M Visit Frequency Limit",
        mode="Informational",
        topic="Frequency",
        logic_type="Same-Day Duplicate",
        source="Payer Policy",
        description="Multiple E/M visits on the same day by the same provider typically require medical necessity justification.",
        clinical_rationale="Multiple same-day E/M services may trigger review to ensure medical necessity.",
        common_mistake="Billing multiple E/M services same day without documentation supporting medical necessity.",
        fix_guidance="Document why separate E/M services were medically necessary if multiple visits occur same day.",
        procedure_codes=("99211", "99212", "99213", "99214", "99215"),
    ),
    PolicyDefinition(
        id="POL-FREQ-INJECT",
        name="Injection Frequency Limits",
        mode="Edit",
        topic="Frequency",
        logic_type="Frequency Limit",
        source="Medical Guidelines/LCD",
        description="Joint injections and nerve blocks have frequency limitations based on medical guidelines.",
        clinical_rationale="Excessive injection frequency may indicate overutilization.",
        common_mistake="Performing injections more frequently than medically indicated or payer-allowed.",
        fix_guidance="Follow frequency guidelines (typically 3-4 injections per joint per year) and document any exceptions.",
        procedure_codes=("20610", "20611", "64483", "64484"),
    ),
]


@dataclass
class PolicyResolver:
    """Lookup over a set of policies, by default the built-in library."""

    policies: list[PolicyDefinition] = field(default_factory=lambda: list(POLICIES))

    def __post_init__(self):
        self._by_id = {p.id: p for p in self.policies}

    def get(self, policy_id: str) -> PolicyDefinition | None:
        return self._by_id.get(policy_id)

    def ids(self) -> list[str]:
        return list(self._by_id)

    def by_topic(self, topic: str) -> list[PolicyDefinition]:
        return [p for p in self.policies if p.topic == topic]

    def missing(self, policy_ids: list[str]) -> list[str]:
        """Ids from *policy_ids* that do not resolve, in input order."""
        return [pid for pid in policy_ids if pid not in self._by_id]

    def guidance(self, policy_id: str) -> PolicyGuidance | None:
        policy = self._by_id.get(policy_id)
        if policy is None:
            return None
        return PolicyGuidance(policy.id, policy.fix_guidance, policy.common_mistake)


default_resolver = PolicyResolver()
