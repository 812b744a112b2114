"""Pipeline package for balloon fusion, refinement and layout.

Subpackages:
- `utils`: shared utilities (`io`, `textio`, `visualization`, `geometry`)
- `detection`: YOLOv8-based balloon detector adapter
- `semantic`: remote OCR/translation source (Gemini)
- `typeset`: scanline layout, font fit, balloon shapes
Modules:
- `fusion`: two-stage matching of detections to semantic balloons
- `refine`: grabCut shape refinement
- `floodfill`: model-free balloon segmentation
- `orchestrator`: page-level async pipeline
"""
