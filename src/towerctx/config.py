# src/towerctx/config.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

GITIGNORE_FILE = ".gitignore"
TOWERIGNORE_FILE = ".towerignore"
IGNORE_FILE_NAMES = (GITIGNORE_FILE, TOWERIGNORE_FILE)

DEFAULT_DEBOUNCE_SECONDS = 0.3
REFRESH_DEBOUNCE_SECONDS = 0.1

DEFAULT_BLOCK_TEMPLATE = (
    '<file name="{fileNameWithExtension}" path="{rawFilePath}">\n{fileContent}\n</file>'
)
DEFAULT_WRAPPER_TEMPLATE = (
    "<context>\n{githubIssues}{treeBlock}<project_files>\n{blocks}\n</project_files>\n</context>"
)
DEFAULT_TREE_TEMPLATE = "<project_tree>\n{projectTree}\n</project_tree>\n"

BUILTIN_IGNORE_PATTERNS = [
    # Version control
    ".git/",
    ".svn/",
    ".hg/",
    ".bzr/",
    ".darcs/",
    ".husky/",
    # Editors
    ".vscode/",
    ".idea/",
    ".vs/",
    ".vscode-test/",
    ".sublime-project",
    ".sublime-workspace",
    "*.swp",
    "*.swo",
    # Lock files
    "*.lock",
    "*.lockb",
    "*.lockfile*",
    "package-lock.json",
    "pnpm-lock.yaml",
    # Dependencies and build output
    "node_modules/",
    "vendor/",
    "Pods/",
    "Carthage/",
    "dist/",
    "build/",
    "out/",
    "target/",
    ".next/",
    ".nuxt/",
    "coverage/",
    ".nyc_output/",
    ".gradle/",
    ".m2/",
    ".cargo/",
    # Caches
    ".cache/",
    "cache/",
    "tmp/",
    "temp/",
    ".tmp/",
    ".temp/",
    "*.cache",
    "*.tsbuildinfo",
    ".eslintcache",
    ".parcel-cache/",
    ".webpack/",
    ".rollup.cache/",
    # Secrets
    ".env",
    ".env.*",
    "secrets/",
    "private/",
    # Test output
    "test-results/",
    "spec-results/",
    ".coverage",
    "htmlcov/",
    # Python
    "venv/",
    ".venv/",
    "env/",
    "__pycache__/",
    ".mypy_cache/",
    ".pytest_cache/",
    ".tox/",
    "*.pyc",
    "*.pyo",
    "*.whl",
    "*.egg-info/",
    "*.egg",
    "*.dist-info/",
    # Documents and media
    "*.pdf",
    "*.docx",
    "*.doc",
    "*.xls",
    "*.xlsx",
    "*.ppt",
    "*.pptx",
    "*.png",
    "*.jpg",
    "*.jpeg",
    "*.gif",
    "*.bmp",
    "*.tiff",
    "*.ico",
    "*.webp",
    "*.svg",
    "*.mp3",
    "*.mp4",
    "*.avi",
    "*.mov",
    "*.wmv",
    "*.webm",
    "*.m4a",
    "*.m4v",
    # Binaries and archives
    "*.so",
    "*.so.*",
    "*.dll",
    "*.dylib",
    "*.lib",
    "*.exe",
    "*.bin",
    "*.o",
    "*.obj",
    "*.class",
    "*.jar",
    "*.war",
    "*.tar",
    "*.gz",
    "*.bz2",
    "*.tgz",
    "*.zip",
    "*.rar",
    "*.7z",
    "*.dmg",
    "*.pkg",
    "*.msi",
    "*.deb",
    "*.rpm",
    "*.iso",
    # Data
    "*.h5",
    "*.hdf5",
    "*.pkl",
    "*.joblib",
    "*.npz",
    "*.npy",
    "*.db",
    "*.sqlite",
    "*.sqlite3",
    # Fonts
    "*.woff",
    "*.woff2",
    "*.ttf",
    "*.eot",
    "*.otf",
    # Keys and certificates
    "*.crt",
    "*.pem",
    "*.key",
    # OS files
    ".DS_Store",
    "Thumbs.db",
    "Desktop.ini",
    # Logs, backups, generated docs
    "*.log",
    "logs/",
    "*.tmp",
    "*.temp",
    "*.bak",
    "*.backup",
    "*~",
    "*.orig",
    "*.rej",
    "docs/_build/",
    "_site/",
    "*.stackdump",
    "*.dmp",
]


class ProjectTreeMode(str, Enum):
    OFF = "off"
    FILES_AND_DIRS = "files-and-dirs"
    DIRS_ONLY = "dirs-only"
    SELECTED_ONLY = "selected-only"

    @classmethod
    def parse(cls, value: str) -> "ProjectTreeMode":
        """Accepts both the short names and the long settings names."""
        key = LEGACY_TREE_TYPES.get(value, value)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown project tree type: {value!r}") from None


LEGACY_TREE_TYPES = {
    "fullFilesAndDirectories": "files-and-dirs",
    "fullDirectoriesOnly": "dirs-only",
    "selectedFilesOnly": "selected-only",
    "none": "off",
}


@dataclass(frozen=True)
class ContextConfig:
    """Immutable template configuration read at generation time."""
    block_template: str = DEFAULT_BLOCK_TEMPLATE
    block_separator: str = "\n"
    block_trim_lines: bool = True
    wrapper_template: Optional[str] = DEFAULT_WRAPPER_TEMPLATE
    tree_mode: ProjectTreeMode = ProjectTreeMode.FILES_AND_DIRS
    tree_show_sizes: bool = False
    tree_template: str = DEFAULT_TREE_TEMPLATE
    tree_line_budget: Optional[int] = None
    prefix: str = ""
    suffix: str = ""
    max_file_size_warning_kb: float = 500


@dataclass(frozen=True)
class Settings:
    """The configuration surface consumed from the host."""
    use_ignore_file: bool = True
    manual_ignore_patterns: Tuple[str, ...] = ()
    persist_selection: bool = False
    max_file_size_warning_kb: float = 500
    block_template: str = DEFAULT_BLOCK_TEMPLATE
    block_separator: str = "\n"
    block_trim_lines: bool = True
    wrapper_template: Optional[str] = DEFAULT_WRAPPER_TEMPLATE
    tree_enabled: bool = True
    tree_type: ProjectTreeMode = ProjectTreeMode.FILES_AND_DIRS
    tree_show_file_size: bool = False
    tree_line_budget: Optional[int] = None
    prompt_prefix: str = ""
    prompt_suffix: str = ""
    extra: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Settings":
        """
        Builds settings from the camelCase keys the host hands over.
        Unknown keys are kept in `extra`; missing keys keep their defaults.
        """
        tree = data.get("projectTree") or {}
        if not isinstance(tree, Mapping):
            raise ValueError("projectTree must be a mapping")

        kwargs: dict = {}
        if "useIgnoreFile" in data:
            kwargs["use_ignore_file"] = bool(data["useIgnoreFile"])
        if "manualIgnorePatterns" in data:
            patterns = data["manualIgnorePatterns"] or []
            if isinstance(patterns, str):
                raise ValueError("manualIgnorePatterns must be a list of strings")
            kwargs["manual_ignore_patterns"] = tuple(str(p) for p in patterns)
        if "persistSelection" in data:
            kwargs["persist_selection"] = bool(data["persistSelection"])
        if "maxFileSizeWarningKB" in data:
            kwargs["max_file_size_warning_kb"] = float(data["maxFileSizeWarningKB"])
        if "blockTemplate" in data:
            kwargs["block_template"] = str(data["blockTemplate"])
        if "blockSeparator" in data:
            kwargs["block_separator"] = str(data["blockSeparator"])
        if "blockTrimLines" in data:
            kwargs["block_trim_lines"] = bool(data["blockTrimLines"])
        if "wrapperTemplate" in data:
            wrapper = data["wrapperTemplate"]
            kwargs["wrapper_template"] = None if wrapper is None else str(wrapper)
        if "promptPrefix" in data:
            kwargs["prompt_prefix"] = str(data["promptPrefix"] or "")
        if "promptSuffix" in data:
            kwargs["prompt_suffix"] = str(data["promptSuffix"] or "")

        if "enabled" in tree:
            kwargs["tree_enabled"] = bool(tree["enabled"])
        if "type" in tree:
            kwargs["tree_type"] = ProjectTreeMode.parse(str(tree["type"]))
        if "showFileSize" in tree:
            kwargs["tree_show_file_size"] = bool(tree["showFileSize"])
        if tree.get("lineBudget") is not None:
            budget = int(tree["lineBudget"])
            if budget < 1:
                raise ValueError("projectTree.lineBudget must be positive")
            kwargs["tree_line_budget"] = budget

        known = {
            "useIgnoreFile", "manualIgnorePatterns", "persistSelection",
            "maxFileSizeWarningKB", "blockTemplate", "blockSeparator",
            "blockTrimLines", "wrapperTemplate", "promptPrefix", "promptSuffix",
            "projectTree",
        }
        kwargs["extra"] = {k: v for k, v in data.items() if k not in known}
        return cls(**kwargs)

    def context_config(self) -> ContextConfig:
        mode = self.tree_type if self.tree_enabled else ProjectTreeMode.OFF
        return ContextConfig(
            block_template=self.block_template,
            block_separator=self.block_separator,
            block_trim_lines=self.block_trim_lines,
            wrapper_template=self.wrapper_template,
            tree_mode=mode,
            # Sizes are meaningless without file leaves.
            tree_show_sizes=self.tree_show_file_size and mode is not ProjectTreeMode.DIRS_ONLY,
            tree_line_budget=self.tree_line_budget,
            prefix=self.prompt_prefix,
            suffix=self.prompt_suffix,
            max_file_size_warning_kb=self.max_file_size_warning_kb,
        )
