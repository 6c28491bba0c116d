from seopages_agent.config import SkillsConfig
from seopages_agent.skills import Skill, SkillRegistry, SkillResolver


def _registry(*, listicle_enabled: bool = True) -> SkillRegistry:
    return SkillRegistry([
        Skill(id="planning", name="Planning", instructions="plan", tools=("create_plan",)),
        Skill(id="blog-writer", name="Blog Writer", instructions="blog", classifications=("blog",)),
        Skill(
            id="listicle-writer",
            name="Listicle Writer",
            instructions="listicle",
            enabled=listicle_enabled,
            classifications=("listicle",),
        ),
        Skill(id="seo-auditor", name="SEO Auditor", instructions="audit"),
    ])


def test_single_listicle_record_auto_selects_listicle_writer():
    resolver = SkillResolver(_registry(), {"listicle": "listicle-writer"})

    resolution = resolver.resolve(None, ["listicle"])

    assert resolution.skill is not None
    assert resolution.skill.id == "listicle-writer"
    assert resolution.auto_detected is True
    assert resolution.classification == "listicle"


def test_multiple_records_never_auto_detect():
    resolver = SkillResolver(_registry(), {"listicle": "listicle-writer", "blog": "blog-writer"})

    resolution = resolver.resolve(None, ["listicle", "blog"])
    same_type = resolver.resolve(None, ["listicle", "listicle"])

    assert resolution.skill is None
    assert resolution.auto_detected is False
    assert same_type.skill is None


def test_explicit_skill_wins_over_classification():
    resolver = SkillResolver(_registry(), {"listicle": "listicle-writer"})

    resolution = resolver.resolve("seo-auditor", ["listicle"])

    assert resolution.skill.id == "seo-auditor"
    assert resolution.auto_detected is False
    assert resolution.reason == "explicit"


def test_disabled_skill_is_never_selected():
    resolver = SkillResolver(_registry(listicle_enabled=False), {"listicle": "listicle-writer"})

    explicit = resolver.resolve("listicle-writer", [])
    routed = resolver.resolve(None, ["listicle"])

    assert explicit.skill is None
    assert routed.skill is None
    assert routed.auto_detected is False


def test_unknown_explicit_id_falls_through_to_routing():
    resolver = SkillResolver(_registry(), {"blog": "blog-writer"})

    resolution = resolver.resolve("no-such-skill", ["blog"])

    assert resolution.skill.id == "blog-writer"
    assert resolution.auto_detected is True


def test_unmapped_or_empty_classification_yields_no_skill():
    resolver = SkillResolver(_registry(), {"blog": "blog-writer"})

    assert resolver.resolve(None, ["podcast"]).skill is None
    assert resolver.resolve(None, [None]).skill is None
    assert resolver.resolve(None, [""]).skill is None
    assert resolver.resolve(None, []).skill is None


def test_routes_pointing_at_missing_skills_yield_no_skill():
    resolver = SkillResolver(_registry(), {"guide": "guide-writer"})

    resolution = resolver.resolve(None, ["guide"])

    assert resolution.skill is None
    assert resolution.classification == "guide"


def test_resolution_is_deterministic():
    resolver = SkillResolver(_registry(), {"listicle": "listicle-writer"})

    assert resolver.resolve(None, ["listicle"]) == resolver.resolve(None, ["listicle"])


def test_routes_merge_skill_triggers_with_config():
    registry = _registry()
    config = SkillsConfig(classification_routes={"blog": "seo-auditor"})

    resolver = SkillResolver.from_registry(registry, config)

    assert resolver.routes["listicle"] == "listicle-writer"
    assert resolver.routes["blog"] == "seo-auditor"


def test_bundled_catalog_routes_every_page_type():
    resolver = SkillResolver.from_registry(SkillRegistry.from_config())

    for classification, skill_id in SkillsConfig().classification_routes.items():
        resolution = resolver.resolve(None, [classification])
        assert resolution.skill is not None
        assert resolution.skill.id == skill_id
