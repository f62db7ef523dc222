"""Services layer - the pipeline stages and the engine pieces they share.

- llm_client: Model gateway with retry/backoff and failure classification
- id_registry: Deterministic stable-id minting
- patch_validator / patch_orchestrator: Scoped, validated story mutations
- story_renderer: Story structure to markdown
- relationship_merger: Add-only merge of discovered relationships
- quality: Judge, rewriter and the bounded quality gate
- refinement_loop: Batch convergence state machine
- discovery_service / interconnection_service / consistency_service: Stage services
- pipeline: PipelineOrchestrator, which wires every service for a run

Usage:
    settings = Settings.load()
    orchestrator = PipelineOrchestrator(settings)
    result = orchestrator.run(PipelineInput(stories=[...]))
"""
