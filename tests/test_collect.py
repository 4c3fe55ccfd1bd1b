import hashlib
import os
import sys

import pytest

from fwbuild.base import collect
from fwbuild.core.profiles import get_profile_config


@pytest.fixture
def armbian_tree(tmp_path):
    src = tmp_path / 'armbian'
    (src / 'output' / 'logs').mkdir(parents=True)
    (src / 'output' / 'images').mkdir(parents=True)
    return src


def write_log(src, name, text, mtime=None):
    log = src / 'output' / 'logs' / name
    log.write_text(text)
    if mtime is not None:
        os.utime(log, (mtime, mtime))
    return log


class TestFindBuildLog:
    def test_newest(self, armbian_tree):
        write_log(armbian_tree, 'log-build-1.log', 'old', mtime=1000)
        new = write_log(armbian_tree, 'log-build-2.log', 'new', mtime=2000)
        assert collect.find_build_log(str(armbian_tree), 'output/logs/*.log') == str(new)

    def test_ignores_stale_logs(self, armbian_tree):
        write_log(armbian_tree, 'log-build-1.log', 'old', mtime=1000)
        assert collect.find_build_log(str(armbian_tree), 'output/logs/*.log', since=1500) is None

    def test_no_logs(self, tmp_path):
        assert collect.find_build_log(str(tmp_path), 'output/logs/*.log') is None


class TestFindArtifact:
    def test_last_match_wins(self, armbian_tree):
        images = armbian_tree / 'output' / 'images'
        (images / 'first.img').write_bytes(b'1')
        (images / 'second.img').write_bytes(b'2')
        log = write_log(armbian_tree, 'build.log',
                        'writing output/images/first.img\n'
                        'Done building [ output/images/second.img ]\n')

        patterns = get_profile_config('armbian')['artifact_patterns']
        artifact = collect.find_artifact(str(log), patterns, str(armbian_tree))
        assert artifact == str(images / 'second.img')

    def test_skips_missing_files(self, armbian_tree):
        image = armbian_tree / 'output' / 'images' / 'real.img'
        image.write_bytes(b'img')
        log = write_log(armbian_tree, 'build.log',
                        f'Done building [ {image} ]\n'
                        'cleanup output/images/deleted.img\n')

        patterns = get_profile_config('armbian')['artifact_patterns']
        assert collect.find_artifact(str(log), patterns, str(armbian_tree)) == str(image)

    def test_no_match(self, armbian_tree):
        log = write_log(armbian_tree, 'build.log', 'build failed\n')
        assert collect.find_artifact(str(log), [r'(?P<path>\S+\.img)'], str(armbian_tree)) is None


class TestCopyArtifact:
    def test_copy_with_checksum(self, tmp_path):
        artifact = tmp_path / 'fw.img'
        artifact.write_bytes(b'firmware')
        shared = tmp_path / 'shared' / 'images'

        dest = collect.copy_artifact(str(artifact), str(shared), checksum=True)

        assert dest == str(shared / 'fw.img')
        assert (shared / 'fw.img').read_bytes() == b'firmware'
        digest = hashlib.sha256(b'firmware').hexdigest()
        assert (shared / 'fw.img.sha256').read_text() == f'{digest}  fw.img\n'

    def test_dry_run(self, tmp_path):
        artifact = tmp_path / 'fw.img'
        artifact.write_bytes(b'firmware')
        dest = collect.copy_artifact(str(artifact), str(tmp_path / 'shared'), dry_run=True)
        assert dest == str(tmp_path / 'shared' / 'fw.img')
        assert not (tmp_path / 'shared').exists()


class TestCollect:
    def test_copies_image_from_log(self, armbian_tree, tmp_path):
        image = armbian_tree / 'output' / 'images' / 'Armbian_24.2.1_Rock-5b_bookworm.img'
        image.write_bytes(b'armbian')
        write_log(armbian_tree, 'log-build-1.log', f'Done building [ {image} ]\n')

        dest = collect.collect(str(armbian_tree), get_profile_config('armbian'),
                               dest_dir=str(tmp_path / 'vagrant'))

        assert open(dest, 'rb').read() == b'armbian'

    def test_no_log(self, armbian_tree, tmp_path):
        with pytest.raises(RuntimeError, match='No build log'):
            collect.collect(str(armbian_tree), get_profile_config('armbian'),
                            dest_dir=str(tmp_path / 'vagrant'))

    def test_no_artifact(self, armbian_tree, tmp_path):
        write_log(armbian_tree, 'log-build-1.log', 'error: build failed\n')
        with pytest.raises(RuntimeError, match='No artifact found'):
            collect.collect(str(armbian_tree), get_profile_config('armbian'),
                            dest_dir=str(tmp_path / 'vagrant'))

    def test_explicit_log(self, armbian_tree, tmp_path):
        image = armbian_tree / 'output' / 'images' / 'fw.img'
        image.write_bytes(b'fw')
        log = tmp_path / 'elsewhere.log'
        log.write_text('output/images/fw.img\n')

        dest = collect.collect(str(armbian_tree), get_profile_config('armbian'),
                               dest_dir=str(tmp_path / 'vagrant'), log_path=str(log))

        assert dest == str(tmp_path / 'vagrant' / 'fw.img')


def run_main(monkeypatch, *argv):
    monkeypatch.setattr(sys, 'argv', ['fwbuild-collect', *argv])
    try:
        collect.main()
    except SystemExit as e:
        return e.code
    return 0


class TestMain:
    def test_copies_with_checksum(self, monkeypatch, armbian_tree, tmp_path):
        image = armbian_tree / 'output' / 'images' / 'fw.img'
        image.write_bytes(b'fw')
        write_log(armbian_tree, 'log-build-1.log', f'Done building [ {image} ]\n')
        shared = tmp_path / 'vagrant'

        assert run_main(monkeypatch, str(armbian_tree), '-d', str(shared), '--checksum') == 0
        assert (shared / 'fw.img').read_bytes() == b'fw'
        assert (shared / 'fw.img.sha256').exists()

    def test_dry_run(self, monkeypatch, armbian_tree, tmp_path):
        image = armbian_tree / 'output' / 'images' / 'fw.img'
        image.write_bytes(b'fw')
        log = tmp_path / 'build.log'
        log.write_text('output/images/fw.img\n')

        assert run_main(monkeypatch, str(armbian_tree), '-d', str(tmp_path / 'vagrant'),
                        '--log', str(log), '-n') == 0
        assert not (tmp_path / 'vagrant').exists()

    def test_no_log(self, monkeypatch, armbian_tree, tmp_path, capsys):
        assert run_main(monkeypatch, str(armbian_tree), '-d', str(tmp_path / 'vagrant')) == 1
        assert 'Error: No build log' in capsys.readouterr().err


def test_container_paths_map_onto_checkout(armbian_tree, tmp_path):
    image = armbian_tree / 'output' / 'images' / 'Armbian_24.2.1_Rock-5b_bookworm.img'
    image.write_bytes(b'armbian')
    write_log(armbian_tree, 'log-build-1.log',
              '[ o.k. ] Done building [ /armbian/output/images/Armbian_24.2.1_Rock-5b_bookworm.img ]\n')

    dest = collect.collect(str(armbian_tree), get_profile_config('armbian'),
                           dest_dir=str(tmp_path / 'vagrant'))

    assert dest == str(tmp_path / 'vagrant' / image.name)


def test_map_path():
    assert collect.map_path('/armbian/output/x.img', {'/armbian/': '/src'}) == '/src/output/x.img'
    assert collect.map_path('/armbianx/x.img', {'/armbian': '/src'}) == '/armbianx/x.img'
    assert collect.map_path('/other/x.img', None) == '/other/x.img'
