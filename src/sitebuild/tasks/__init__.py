"""Transform task modules live here.

Each module decorates its transform with
`@orchestrator.task(name=..., inputs=[...], outputs=[...], output_dir=...)`;
the CLI discovers them by importing every module in this package.

Keep one asset type per module; only shared helpers belong in this file.
"""
