import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from export_media_library import CLI, main, resolve_output_path
from exporter_errors import (
    E_ALREADY_EXISTS,
    E_INVALID_ARGS,
    E_LOCK_EXISTS,
    E_NETWORK_ERROR,
    E_SUCCESS,
    E_UNSUPPORTED_LIBRARY,
)
from fake_plex import FakePlexServer, make_config, movie_element


class TestMain(unittest.TestCase):
    """
    Runs main() end to end against a FakePlexServer, with config, output, and lock in a temp dir.
    """

    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.root = Path(self.tmp.name)
        self.out_dir = self.root / 'exports'
        self.lock_path = self.root / 'exporter.lock'
        self.server = FakePlexServer()
        self.server.add_collection('1', 1, [movie_element(i) for i in range(1, 4)])
        for patcher in (
            mock.patch('plex_fetcher._sleep'),
            mock.patch.dict(os.environ, {'PLEX_TOKEN': '', 'PLEX_URL': ''}),
            mock.patch('instance_lock.signal.signal'),
        ):
            patcher.start()
            self.addCleanup(patcher.stop)

    def run_main(self, *args: str, token: bool = True) -> int:
        argv: list[str] = ['--config', str(self.root / 'config' / 'exporter.conf'), '-d', str(self.out_dir), '-q']
        if token:
            argv += ['-t', 'test-token']
        argv += list(args)
        return main(argv, transport=self.server.transport(), lock_path=self.lock_path)

    def test_list(self) -> None:
        with mock.patch('builtins.print'):
            self.assertEqual(self.run_main('-l'), E_SUCCESS)
        self.assertEqual(self.server.requests[0].headers['X-Plex-Token'], 'test-token')
        self.assertFalse(self.lock_path.exists())

    def test_token_required(self) -> None:
        self.assertEqual(self.run_main('-l', token=False), E_INVALID_ARGS)
        self.assertEqual(self.server.requests, [])

    def test_export_by_name(self) -> None:
        self.assertEqual(self.run_main('-n', 'Movies'), E_SUCCESS)
        lines: list[str] = (self.out_dir / 'Movies.csv').read_text(encoding='utf-8').splitlines()
        self.assertEqual(len(lines), 4)

    def test_export_by_id_with_output(self) -> None:
        self.assertEqual(self.run_main('-i', '1', '-o', 'films.csv'), E_SUCCESS)
        self.assertTrue((self.out_dir / 'films.csv').exists())

    def test_existing_file(self) -> None:
        self.assertEqual(self.run_main('-n', 'Movies'), E_SUCCESS)
        self.assertEqual(self.run_main('-n', 'Movies'), E_ALREADY_EXISTS)
        self.assertEqual(self.run_main('-n', 'Movies', '-f'), E_SUCCESS)

    def test_unsupported_library(self) -> None:
        self.assertEqual(self.run_main('-n', 'Family Photos'), E_UNSUPPORTED_LIBRARY)

    def test_network_error(self) -> None:
        self.server.sections_failures = 3
        self.assertEqual(self.run_main('-n', 'Movies'), E_NETWORK_ERROR)

    def test_export_all_tolerates_failures(self) -> None:
        self.server.add_collection('5', 1, [movie_element(1)])
        self.assertEqual(self.run_main(), E_SUCCESS)
        self.assertTrue((self.out_dir / 'Movies.csv').exists())
        self.assertTrue((self.out_dir / 'Kids_Movies.csv').exists())

    def test_lock_held(self) -> None:
        self.lock_path.write_text('4242\n', encoding='utf-8')
        with mock.patch('instance_lock.pid_is_alive', return_value=True):
            self.assertEqual(self.run_main('-l'), E_LOCK_EXISTS)
        self.assertEqual(self.server.requests, [])


class TestCli(unittest.TestCase):
    def test_flags_default_to_none(self) -> None:
        args = CLI.parse_args(['-t', 'abc'])
        self.assertIsNone(args.force)
        self.assertIsNone(args.quiet)
        self.assertIsNone(args.music_mode)
        self.assertFalse(args.list)

    def test_name_and_id_are_exclusive(self) -> None:
        with mock.patch('sys.stderr'):
            with self.assertRaises(SystemExit):
                CLI.parse_args(['-n', 'Movies', '-i', '1'])

    def test_version(self) -> None:
        with mock.patch('sys.stdout'):
            with self.assertRaises(SystemExit) as ctx:
                CLI.parse_args(['--version'])
        self.assertEqual(ctx.exception.code, 0)

    def test_resolve_output_path(self) -> None:
        config = make_config(output_dir='out')
        self.assertEqual(resolve_output_path(config, None, 'Kids Movies'), Path('out') / 'Kids-Movies.csv')
        self.assertEqual(resolve_output_path(config, 'x.csv', 'Kids Movies'), Path('out') / 'x.csv')
        self.assertEqual(resolve_output_path(config, None, None), Path('out') / 'library_export.csv')


if __name__ == '__main__':
    unittest.main()
