"""Tests for spmx.services.framework_build module."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

from spmx.core.config import Timeouts
from spmx.core.models import BUILD_TARGETS, PackageProduct, SliceBuildResult, SliceStatus
from spmx.core.result import Err, Ok, Result
from spmx.output.events import RecordingEventSink
from spmx.platform.cancel import CancelToken
from spmx.platform.process import ProcessError, ProcessErrorKind
from spmx.services.framework_build import (
    CREATE_FAILED_PREFIX,
    MACRO_VALIDATION_FLAG,
    NO_ARTIFACT_MESSAGE,
    NO_SLICES_PREFIX,
    UNSUPPORTED_TARGET_MESSAGE,
    DYNAMIC_PLANS,
    STATIC_PLANS,
    FrameworkBuilder,
    failure_summary,
    is_macro_flag_unsupported,
    parse_package_dump,
    parse_scheme_list,
    plans_for,
    slice_build_args,
)

ALL_SLICES = ("ios", "ios-simulator", "macos", "maccatalyst")

BuildHook = Callable[[list[str]], Result[str, ProcessError] | None]


def _dump(
    *,
    name: str = "Kit",
    platforms: tuple[str, ...] = (),
    products: tuple[tuple[str, str | None], ...] = (("Kit", "automatic"),),
) -> dict[str, object]:
    return {
        "name": name,
        "platforms": [{"platformName": p, "version": "13.0"} for p in platforms],
        "products": [
            {
                "name": product,
                "type": {"library": [kind]} if kind is not None else {"executable": None},
            }
            for product, kind in products
        ],
    }


def _fail(
    stderr: str = "error: build failed", *, kind: ProcessErrorKind = "failed"
) -> Err[ProcessError]:
    returncode = -1 if kind == "timeout" else 65
    return Err(ProcessError(("xcodebuild",), returncode, "", stderr, kind=kind))


class MockBuildRunner:
    """Fake swift/xcodebuild/libtool that lays out DerivedData like Xcode does.

    ``artifact`` selects what a successful slice build leaves behind:
    ``framework``, ``scheme-framework`` (named after the built scheme),
    ``nested-framework``, ``library`` or ``object``.
    """

    def __init__(
        self,
        dump: dict[str, object] | Result[str, ProcessError] | None = None,
        *,
        schemes: tuple[str, ...] = ("Kit",),
        scheme_result: Result[str, ProcessError] | None = None,
        artifact: str = "framework",
        build_hook: BuildHook | None = None,
        create_result: Result[str, ProcessError] | None = None,
    ) -> None:
        self.dump = _dump() if dump is None else dump
        self.schemes = schemes
        self.scheme_result = scheme_result
        self.artifact = artifact
        self.build_hook = build_hook
        self.create_result = create_result
        self.commands: list[list[str]] = []

    def run(
        self,
        cmd: list[str],
        cwd: Path,
        env: dict[str, str] | None = None,
        *,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> Result[str, ProcessError]:
        self.commands.append(cmd)
        if cmd[:2] == ["swift", "package"] and cmd[-1] == "dump-package":
            if isinstance(self.dump, dict):
                return Ok(json.dumps(self.dump))
            return self.dump
        if cmd[:3] == ["xcodebuild", "-list", "-json"]:
            if self.scheme_result is not None:
                return self.scheme_result
            return Ok(json.dumps({"workspace": {"name": "Kit", "schemes": list(self.schemes)}}))
        if cmd[:2] == ["xcodebuild", "-create-xcframework"]:
            if self.create_result is not None:
                return self.create_result
            Path(cmd[cmd.index("-output") + 1]).mkdir(parents=True)
            return Ok("")
        if cmd[0] == "libtool":
            Path(cmd[3]).write_bytes(b"!<arch>\n")
            return Ok("")
        if cmd[0] == "xcodebuild" and cmd[-1] == "build":
            if self.build_hook is not None:
                hooked = self.build_hook(cmd)
                if hooked is not None:
                    return hooked
            self._write_products(cmd)
            return Ok("")
        return Ok("")

    def _write_products(self, cmd: list[str]) -> None:
        derived = Path(cmd[cmd.index("-derivedDataPath") + 1])
        destination = cmd[cmd.index("-destination") + 1]
        target = next(t for t in BUILD_TARGETS if t.destination == destination)
        products = derived / "Build" / "Products" / target.output_dirs[0]
        products.mkdir(parents=True, exist_ok=True)
        match self.artifact:
            case "framework":
                (products / "Kit.framework").mkdir(exist_ok=True)
                (products / "Kit.framework.dSYM").mkdir(exist_ok=True)
            case "scheme-framework":
                scheme = cmd[cmd.index("-scheme") + 1]
                (products / f"{scheme}.framework").mkdir(exist_ok=True)
            case "nested-framework":
                nested = products / "PackageFrameworks" / "Kit.framework"
                nested.mkdir(parents=True, exist_ok=True)
            case "library":
                (products / "libKit.a").write_bytes(b"!<arch>\n")
                (products / "include").mkdir(exist_ok=True)
            case "object":
                (products / "Kit.o").write_bytes(b"\xcf\xfa\xed\xfe")

    def builds(self) -> list[list[str]]:
        return [c for c in self.commands if c[0] == "xcodebuild" and c[-1] == "build"]

    def find(self, program: str, first_arg: str) -> list[list[str]]:
        return [c for c in self.commands if c[0] == program and c[1] == first_arg]


def _builder(runner: MockBuildRunner, events: RecordingEventSink | None = None) -> FrameworkBuilder:
    return FrameworkBuilder(runner, events=events, timeouts=Timeouts())


# =============================================================================
# Pure helpers
# =============================================================================


class TestParsePackageDump:
    """Test parse_package_dump."""

    def test_products_and_platforms(self) -> None:
        text = json.dumps(
            _dump(
                platforms=("iOS", "macOS"),
                products=(("Kit", "dynamic"), ("kit-cli", None), ("KitCore", "automatic")),
            )
        )

        dump = parse_package_dump(text)

        assert dump is not None
        assert dump.name == "Kit"
        assert dump.platforms == frozenset({"ios", "macos"})
        assert [p.name for p in dump.library_products] == ["Kit", "KitCore"]
        assert dump.library_products[0].library_type == "dynamic"

    def test_invalid(self) -> None:
        assert parse_package_dump("not json") is None
        assert parse_package_dump(json.dumps({"products": []})) is None


class TestParseSchemeList:
    def test_union_of_workspace_and_project(self) -> None:
        text = json.dumps(
            {"workspace": {"schemes": ["Kit", " "]}, "project": {"schemes": ["KitTests", "Kit"]}}
        )
        assert parse_scheme_list(text) == frozenset({"Kit", "KitTests"})

    def test_invalid_json(self) -> None:
        assert parse_scheme_list("xcodebuild: error") is None


class TestSliceBuildArgs:
    """Test slice_build_args."""

    def test_dynamic_distribution_plan(self, tmp_path: Path) -> None:
        args = slice_build_args("Kit", BUILD_TARGETS[0], tmp_path / "dd", DYNAMIC_PLANS[0])

        assert args[:3] == ["xcodebuild", "-scheme", "Kit"]
        assert args[args.index("-destination") + 1] == "generic/platform=iOS"
        assert args[args.index("-derivedDataPath") + 1] == str(tmp_path / "dd")
        assert MACRO_VALIDATION_FLAG in args
        assert "BUILD_LIBRARY_FOR_DISTRIBUTION=YES" in args
        assert "MACH_O_TYPE=mh_dylib" in args
        assert args[-1] == "build"

    def test_compatibility_plan_without_macro_flag(self, tmp_path: Path) -> None:
        args = slice_build_args(
            "Kit", BUILD_TARGETS[3], tmp_path, DYNAMIC_PLANS[3], skip_macro_validation=False
        )

        assert MACRO_VALIDATION_FLAG not in args
        assert "BUILD_LIBRARY_FOR_DISTRIBUTION=NO" in args
        assert "MACH_O_TYPE=mh_dylib" not in args

    def test_plans_for(self) -> None:
        assert plans_for(PackageProduct("Kit", True, "static")) == STATIC_PLANS
        assert plans_for(PackageProduct("Kit", True, "Static")) == STATIC_PLANS
        assert plans_for(PackageProduct("Kit", True)) == DYNAMIC_PLANS
        assert not any(plan.force_dynamic for plan in STATIC_PLANS)


class TestMiscHelpers:
    def test_macro_flag_unsupported(self) -> None:
        assert is_macro_flag_unsupported("xcodebuild: error: invalid option '-skipMacroValidation'")
        assert is_macro_flag_unsupported("Unknown option '-SKIPMACROVALIDATION'")
        assert not is_macro_flag_unsupported("error: no such module 'Foo'")

    def test_failure_summary(self) -> None:
        slices = [
            SliceBuildResult("ios", SliceStatus.FAILED, message="boom"),
            SliceBuildResult("macos", SliceStatus.SKIPPED, message=UNSUPPORTED_TARGET_MESSAGE),
            SliceBuildResult("maccatalyst", SliceStatus.FAILED, message="bang"),
        ]

        assert failure_summary(slices, "Prefix.") == "Prefix. ios: boom | maccatalyst: bang"
        assert failure_summary(slices[1:2], "Prefix.") == "Prefix."


# =============================================================================
# Builder
# =============================================================================


class TestBuild:
    """Test FrameworkBuilder.build end to end with a fake toolchain."""

    def test_builds_all_slices(self, tmp_path: Path) -> None:
        runner = MockBuildRunner()
        events = RecordingEventSink()

        result = _builder(runner, events).build(tmp_path, tmp_path / "scratch")

        assert isinstance(result, Ok)
        assert result.value.failures == ()
        product = result.value.built_products[0]
        assert product.built_slices == ALL_SLICES
        assert product.xcframework_path == (
            tmp_path / "scratch" / "framework-build" / "Kit" / "Kit.xcframework"
        )
        assert product.xcframework_path.is_dir()
        assert any(p.name == "Kit.framework.dSYM" for p in product.symbol_paths)

        create = runner.find("xcodebuild", "-create-xcframework")[0]
        assert create.count("-framework") == 4
        assert events.find("Discovered 1 buildable library product(s).")
        assert [s.target for s in events.slices] == list(ALL_SLICES)

    def test_products_with_same_identity_get_separate_roots(self, tmp_path: Path) -> None:
        runner = MockBuildRunner(
            _dump(products=(("Foo.Bar", "automatic"), ("Foo-Bar", "automatic"))),
            schemes=("Foo.Bar", "Foo-Bar"),
            artifact="scheme-framework",
        )
        root = tmp_path / "scratch" / "framework-build"

        result = _builder(runner).build(tmp_path, tmp_path / "scratch")

        assert isinstance(result, Ok)
        first, second = result.value.built_products
        assert first.xcframework_path == root / "Foo-Bar" / "Foo-Bar.xcframework"
        assert second.xcframework_path == root / "Foo-Bar-2" / "Foo-Bar.xcframework"
        assert first.xcframework_path.is_dir()
        assert second.xcframework_path.is_dir()

        derived = {b[b.index("-derivedDataPath") + 1] for b in runner.builds()}
        assert len(derived) == 8
        first_create, second_create = runner.find("xcodebuild", "-create-xcframework")
        assert all("Foo.Bar.framework" in a for a in first_create if a.endswith(".framework"))
        assert all("Foo-Bar-2" in a for a in second_create if a.endswith(".framework"))

    def test_undeclared_platforms_skipped(self, tmp_path: Path) -> None:
        runner = MockBuildRunner(_dump(platforms=("macos",)))

        result = _builder(runner).build(tmp_path, tmp_path / "scratch")

        assert isinstance(result, Ok)
        product = result.value.built_products[0]
        statuses = {s.target: s for s in product.slices}
        assert statuses["ios"].status is SliceStatus.SKIPPED
        assert statuses["ios"].message == UNSUPPORTED_TARGET_MESSAGE
        assert statuses["ios-simulator"].status is SliceStatus.SKIPPED
        assert product.built_slices == ("macos", "maccatalyst")

    def test_nested_framework_discovered(self, tmp_path: Path) -> None:
        runner = MockBuildRunner(artifact="nested-framework")

        result = _builder(runner).build(tmp_path, tmp_path / "scratch")

        assert isinstance(result, Ok)
        slices = result.value.built_products[0].slices
        paths = [s.artifact_path for s in slices]
        assert all(p is not None and p.parent.name == "PackageFrameworks" for p in paths)

    def test_linkage_fallback(self, tmp_path: Path) -> None:
        def no_dynamic(cmd: list[str]) -> Result[str, ProcessError] | None:
            return _fail("cannot force dynamic") if "MACH_O_TYPE=mh_dylib" in cmd else None

        runner = MockBuildRunner(build_hook=no_dynamic)

        result = _builder(runner).build(tmp_path, tmp_path / "scratch")

        assert isinstance(result, Ok)
        slices = result.value.built_products[0].slices
        assert all(
            s.message == "Dynamic build was unavailable; used package default linkage."
            for s in slices
        )
        assert len(runner.builds()) == 8

    def test_every_plan_fails(self, tmp_path: Path) -> None:
        runner = MockBuildRunner(build_hook=lambda cmd: _fail("error: no such module 'Foo'"))

        result = _builder(runner).build(tmp_path, tmp_path / "scratch")

        assert isinstance(result, Ok)
        assert result.value.built_products == ()
        failure = result.value.failures[0]
        assert failure.name == "Kit"
        assert failure.reason.startswith(NO_SLICES_PREFIX)
        assert "ios: Command failed (65)" in failure.reason
        assert len(runner.builds()) == 16
        assert runner.find("xcodebuild", "-create-xcframework") == []

    def test_timeout_stops_plan_walk(self, tmp_path: Path) -> None:
        runner = MockBuildRunner(build_hook=lambda cmd: _fail(kind="timeout"))

        result = _builder(runner).build(tmp_path, tmp_path / "scratch")

        assert isinstance(result, Ok)
        assert len(runner.builds()) == 4
        assert "Slice build timed out after 12 minutes." in result.value.failures[0].reason

    def test_macro_flag_retry(self, tmp_path: Path) -> None:
        def old_xcode(cmd: list[str]) -> Result[str, ProcessError] | None:
            if MACRO_VALIDATION_FLAG in cmd:
                return _fail("xcodebuild: error: invalid option '-skipMacroValidation'")
            return None

        runner = MockBuildRunner(build_hook=old_xcode)

        result = _builder(runner).build(tmp_path, tmp_path / "scratch")

        assert isinstance(result, Ok)
        assert result.value.built_products[0].built_slices == ALL_SLICES
        builds = runner.builds()
        assert len(builds) == 8
        assert MACRO_VALIDATION_FLAG not in builds[1]
        assert all(s.message is None for s in result.value.built_products[0].slices)

    def test_build_without_artifacts(self, tmp_path: Path) -> None:
        runner = MockBuildRunner(build_hook=lambda cmd: Ok(""))

        result = _builder(runner).build(tmp_path, tmp_path / "scratch")

        assert isinstance(result, Ok)
        assert NO_ARTIFACT_MESSAGE in result.value.failures[0].reason


class TestStaticProducts:
    """Test static library slices."""

    def test_static_library_with_headers(self, tmp_path: Path) -> None:
        runner = MockBuildRunner(_dump(products=(("Kit", "static"),)), artifact="library")

        result = _builder(runner).build(tmp_path, tmp_path / "scratch")

        assert isinstance(result, Ok)
        product = result.value.built_products[0]
        assert all(s.artifact_kind == "library" for s in product.slices)
        for s in product.slices:
            assert s.artifact_path is not None
            assert s.headers_path == s.artifact_path.parent / "include"
        assert not any("MACH_O_TYPE=mh_dylib" in c for c in runner.builds())
        create = runner.find("xcodebuild", "-create-xcframework")[0]
        assert create.count("-library") == 4
        assert create.count("-headers") == 4

    def test_object_file_wrapped_with_libtool(self, tmp_path: Path) -> None:
        runner = MockBuildRunner(_dump(products=(("Kit", "static"),)), artifact="object")

        result = _builder(runner).build(tmp_path, tmp_path / "scratch")

        assert isinstance(result, Ok)
        assert len(runner.find("libtool", "-static")) == 4
        ios = result.value.built_products[0].slices[0]
        assert ios.artifact_path is not None and ios.artifact_path.name == "libKit.a"
        assert ios.headers_path == (
            tmp_path / "scratch" / "framework-build" / "Kit" / "ios" / "headers"
        )


class TestSchemesAndMetadata:
    """Test scheme discovery and package description failures."""

    def test_missing_scheme_is_product_failure(self, tmp_path: Path) -> None:
        runner = MockBuildRunner(schemes=("Other",))

        result = _builder(runner).build(tmp_path, tmp_path / "scratch")

        assert isinstance(result, Ok)
        assert result.value.failures[0].reason == (
            "No matching Xcode scheme was found for this product."
        )
        assert runner.builds() == []

    def test_scheme_listing_timeout(self, tmp_path: Path) -> None:
        events = RecordingEventSink()
        runner = MockBuildRunner(scheme_result=_fail(kind="timeout"))

        result = _builder(runner, events).build(tmp_path, tmp_path / "scratch")

        assert isinstance(result, Ok)
        assert result.value.failures[0].reason == (
            "Scheme discovery timed out while running xcodebuild -list."
        )
        assert events.warnings == ["Timed out listing schemes after 5 minutes."]

    def test_products_without_library_are_ignored(self, tmp_path: Path) -> None:
        runner = MockBuildRunner(_dump(products=(("kit-cli", None),)))

        result = _builder(runner).build(tmp_path, tmp_path / "scratch")

        assert isinstance(result, Ok)
        assert result.value.built_products == ()
        assert result.value.failures == ()

    def test_dump_failure(self, tmp_path: Path) -> None:
        runner = MockBuildRunner(_fail("error: manifest parse error"))

        result = _builder(runner).build(tmp_path, tmp_path / "scratch")

        assert isinstance(result, Err)
        assert result.error.kind == "command_failed"

    def test_dump_timeout(self, tmp_path: Path) -> None:
        runner = MockBuildRunner(_fail(kind="timeout"))

        result = _builder(runner).build(tmp_path, tmp_path / "scratch")

        assert isinstance(result, Err)
        assert result.error.message == (
            "Timed out running 'swift package dump-package' after 2 minutes."
        )

    def test_dump_unparseable(self, tmp_path: Path) -> None:
        runner = MockBuildRunner(Ok("warning: something\n"))

        result = _builder(runner).build(tmp_path, tmp_path / "scratch")

        assert isinstance(result, Err)
        assert result.error.kind == "invalid_metadata"

    def test_create_failure(self, tmp_path: Path) -> None:
        runner = MockBuildRunner(create_result=_fail("error: binaries with multiple platforms"))

        result = _builder(runner).build(tmp_path, tmp_path / "scratch")

        assert isinstance(result, Ok)
        assert result.value.failures[0].reason.startswith(CREATE_FAILED_PREFIX)
