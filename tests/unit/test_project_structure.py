"""Test project structure and basic imports."""

import importlib
from pathlib import Path


class TestProjectStructure:
    """Test that the project structure is set up correctly."""

    def test_source_directory_exists(self):
        """Test that the source directory exists."""
        src_dir = Path(__file__).parent.parent.parent / "src"
        assert src_dir.exists()
        assert src_dir.is_dir()

    def test_main_package_importable(self):
        """Test that the main package can be imported."""
        import fitness_pal

        assert hasattr(fitness_pal, "__version__")
        assert hasattr(fitness_pal, "__author__")

    def test_submodules_exist(self):
        """Test that all submodules exist and can be imported."""
        submodules = [
            "fitness_pal.config",
            "fitness_pal.execution",
            "fitness_pal.persistence",
            "fitness_pal.state",
            "fitness_pal.utils",
        ]

        for module_name in submodules:
            module = importlib.import_module(module_name)
            assert module is not None

    def test_public_exports(self):
        from fitness_pal.execution import GenerationEngine, SessionController
        from fitness_pal.persistence import PersistenceReconciler
        from fitness_pal.state import GenerationStore

        assert callable(GenerationEngine)
        assert callable(SessionController)
        assert callable(PersistenceReconciler)
        assert callable(GenerationStore)

    def test_packaging_files_exist(self):
        """Test that packaging files exist."""
        project_root = Path(__file__).parent.parent.parent

        assert (project_root / "pyproject.toml").exists()
        assert (project_root / "setup.py").exists()
