"""
The MIT License (MIT)

Copyright (c) 2026-present mrsnifo

Permission is hereby granted, free of charge, to any person obtaining a
copy of this software and associated documentation files (the "Software"),
to deal in the Software without restriction, including without limitation
the rights to use, copy, modify, merge, publish, distribute, sublicense,
and/or sell copies of the Software, and to permit persons to whom the
Software is furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in
all copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS
OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
FITNESS FOR A PARTICULAR PURPOSE AND NON-INFRINGEMENT. IN NO EVENT SHALL THE
AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING
FROM, OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER
DEALINGS IN THE SOFTWARE.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, TextIO
from .utils import setup_logging
import aiohttp
import argparse
import asyncio
import csv
import ipaddress
import json
import logging
import os
import re
import sys

_logger = logging.getLogger(__name__)

__all__ = (
    'Source',
    'Harvest',
    'Outcome',
    'FirewallUploader',
    'DEFAULT_PUBLIC_SOURCES',
    'extract_ips',
    'fetch_public_ips',
    'write_blocklist',
    'write_report',
    'run',
    'main',
)

CLOUDFLARE_API = 'https://api.cloudflare.com/client/v4'
REPORT_HEADER = ('ip', 'status', 'http_status', 'sources', 'detail')
MAX_DETAIL_LENGTH = 800

_NON_ADDRESS = re.compile(r'[^0-9a-fA-F:.]+')
_WHITESPACE = re.compile(r'\s+')


@dataclass(frozen=True)
class Source:
    name: str
    url: str


DEFAULT_PUBLIC_SOURCES = (
    Source('abusech_feodo', 'https://feodotracker.abuse.ch/downloads/ipblocklist.txt'),
    Source('emergingthreats_compromised', 'https://rules.emergingthreats.net/blockrules/compromised-ips.txt'),
)


def extract_ips(raw: str) -> List[str]:
    """Return every IPv4/IPv6 token found in ``raw``, in order and with repeats."""
    ips = []
    for token in _NON_ADDRESS.split(raw):
        if not token:
            continue
        try:
            ipaddress.ip_address(token)
        except ValueError:
            continue
        ips.append(token)
    return ips


@dataclass
class Harvest:
    """
    Addresses collected from one run.

    Attributes
    ----------
    ips: List[str]
        Every address seen, repeats included.
    sources: Dict[str, List[str]]
        Names of the public sources that listed each address.
    errors: List[str]
        ``name:status`` entries for sources that could not be read.
    """

    ips: List[str] = field(default_factory=list)
    sources: Dict[str, List[str]] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def unique(self) -> List[str]:
        return list(dict.fromkeys(self.ips))

    def add(self, ips: Iterable[str], source: Optional[str] = None) -> None:
        for ip in ips:
            self.ips.append(ip)
            if source is None:
                continue
            names = self.sources.setdefault(ip, [])
            if source not in names:
                names.append(source)

    def sources_for(self, ip: str) -> str:
        return '|'.join(self.sources.get(ip, ())) or 'input'


@dataclass
class Outcome:
    ip: str
    status: str
    http_status: Optional[int] = None
    sources: str = 'input'
    detail: str = ''

    def row(self) -> List[str]:
        http_status = '' if self.http_status is None else str(self.http_status)
        return [self.ip, self.status, http_status, self.sources, self.detail]


async def fetch_public_ips(session: aiohttp.ClientSession, sources: Sequence[Source]) -> Harvest:
    """Download every source, recording failures instead of raising."""
    harvest = Harvest()
    for source in sources:
        try:
            async with session.get(source.url) as response:
                if response.status >= 400:
                    harvest.errors.append(f'{source.name}:{response.status}')
                    continue
                text = await response.text(errors='replace')
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            _logger.warning('Could not fetch %s: %s', source.url, exc)
            harvest.errors.append(f'{source.name}:fetch-error')
            continue
        harvest.add(extract_ips(text), source.name)
    return harvest


class FirewallUploader:
    """
    Creates one Cloudflare IP access rule per address.

    An existing rule (HTTP 409, or a body saying it already exists) is a
    ``skipped`` outcome, not a failure.

    Parameters
    ----------
    session: aiohttp.ClientSession
        Session used for API calls.
    api_token: str
        Cloudflare API token.
    zone_id: str
        Zone the rules are created in.
    mode: str
        Rule mode, e.g. ``block`` or ``challenge``.
    notes_prefix: str
        Prefix of the note attached to every rule.
    api_base: str
        Cloudflare API root.
    """

    def __init__(
            self,
            session: aiohttp.ClientSession,
            *,
            api_token: str,
            zone_id: str,
            mode: str = 'block',
            notes_prefix: str = 'botnet-tracker:script',
            api_base: str = CLOUDFLARE_API
    ) -> None:
        self.session: aiohttp.ClientSession = session
        self.api_token: str = api_token
        self.mode: str = mode
        self.notes_prefix: str = notes_prefix
        self.endpoint: str = f'{api_base.rstrip("/")}/zones/{zone_id}/firewall/access_rules/rules'

    def payload(self, ip: str) -> Dict[str, object]:
        now = datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')
        return {
            'mode': self.mode,
            'configuration': {'target': 'ip', 'value': ip},
            'notes': f'{self.notes_prefix}:{now}',
        }

    async def upload(self, ip: str, sources: str = 'input') -> Outcome:
        headers = {'Authorization': f'Bearer {self.api_token}'}
        async with self.session.post(self.endpoint, json=self.payload(ip), headers=headers) as response:
            if response.status < 400:
                return Outcome(ip, 'created', response.status, sources)
            body = await response.text(errors='replace')

        if response.status == 409 or 'already exists' in body.lower():
            return Outcome(ip, 'skipped', response.status, sources, 'already exists')

        detail = _WHITESPACE.sub(' ', body).strip()[:MAX_DETAIL_LENGTH]
        _logger.error('Failed %s (%s): %s', ip, response.status, detail)
        return Outcome(ip, 'failed', response.status, sources, detail)

    async def upload_all(self, harvest: Harvest) -> List[Outcome]:
        return [await self.upload(ip, harvest.sources_for(ip)) for ip in harvest.unique()]


def write_blocklist(path: Path, ips: Sequence[str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(''.join(f'{ip}\n' for ip in ips), encoding='utf-8')


def write_report(path: Path, outcomes: Sequence[Outcome]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open('w', encoding='utf-8', newline='') as fp:
        writer = csv.writer(fp, lineterminator='\n')
        writer.writerow(REPORT_HEADER)
        writer.writerows(outcome.row() for outcome in outcomes)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='botnetguard-harvest',
        description='Collect IP addresses from a file, stdin or public blocklists and '
                    'optionally push them to Cloudflare IP access rules.',
        epilog='Upload requires CLOUDFLARE_API_TOKEN and CLOUDFLARE_ZONE_ID. '
               'CLOUDFLARE_BLOCK_MODE (default: block) and CLOUDFLARE_BLOCK_NOTES_PREFIX '
               '(default: botnet-tracker:script) are optional.',
    )
    parser.add_argument('path', nargs='?', help='File with addresses to collect')
    parser.add_argument('--csv', default='output/upload-results.csv', help='Per-address results CSV')
    parser.add_argument('--out', default='output/blocklist.txt', help='Merged blocklist text file')
    parser.add_argument('--public', action='store_true', help='Fetch addresses from public sources')
    parser.add_argument('--source', action='append', default=[], metavar='URL',
                        help='Public source URL, replaces the defaults (repeatable)')
    parser.add_argument('--no-upload', action='store_true', help='Skip upload even if credentials exist')
    return parser


async def collect(
        args: argparse.Namespace,
        session: aiohttp.ClientSession,
        stdin: Optional[TextIO] = None
) -> Harvest:
    """Read addresses from the first available input: path, public sources, stdin."""
    if args.path:
        harvest = Harvest()
        harvest.add(extract_ips(Path(args.path).read_text(encoding='utf-8', errors='replace')))
        return harvest

    if not args.public and stdin is not None and not stdin.isatty():
        raw = stdin.read()
        if raw.strip():
            harvest = Harvest()
            harvest.add(extract_ips(raw))
            return harvest

    sources = [Source(f'custom_{index}', url) for index, url in enumerate(args.source, 1)]
    return await fetch_public_ips(session, sources or DEFAULT_PUBLIC_SOURCES)


async def run(
        args: argparse.Namespace,
        environ: Mapping[str, str],
        *,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
        api_base: str = CLOUDFLARE_API
) -> int:
    """
    Execute one harvest.

    Returns
    -------
    int
        Process exit status: 1 when nothing was collected or an upload failed.
    """
    stdout = stdout or sys.stdout
    api_token = environ.get('CLOUDFLARE_API_TOKEN', '')
    zone_id = environ.get('CLOUDFLARE_ZONE_ID', '')

    async with aiohttp.ClientSession() as session:
        harvest = await collect(args, session, stdin)
        ips = harvest.unique()
        if not ips:
            _logger.error('No valid IPs found from input/public sources')
            if harvest.errors:
                _logger.error('Source errors: %s', ', '.join(harvest.errors))
            return 1

        write_blocklist(Path(args.out), ips)

        can_upload = bool(api_token and zone_id) and not args.no_upload
        if can_upload:
            uploader = FirewallUploader(
                session,
                api_token=api_token,
                zone_id=zone_id,
                mode=environ.get('CLOUDFLARE_BLOCK_MODE', 'block'),
                notes_prefix=environ.get('CLOUDFLARE_BLOCK_NOTES_PREFIX', 'botnet-tracker:script'),
                api_base=api_base,
            )
            outcomes = await uploader.upload_all(harvest)
        else:
            detail = 'upload disabled (--no-upload)' if args.no_upload else 'cloudflare credentials not set'
            outcomes = [Outcome(ip, 'collected', None, harvest.sources_for(ip), detail) for ip in ips]

    write_report(Path(args.csv), outcomes)

    counts = {status: sum(1 for o in outcomes if o.status == status) for status in ('created', 'skipped', 'failed')}
    summary = {
        'collected': len(ips),
        'uploaded': can_upload,
        **counts,
        'blocklistPath': args.out,
        'csvPath': args.csv,
        'sourceErrors': harvest.errors,
    }
    stdout.write(json.dumps(summary, indent=2) + '\n')
    return 1 if counts['failed'] else 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=logging.INFO, root=False)
    return asyncio.run(run(args, os.environ, stdin=sys.stdin))


if __name__ == '__main__':
    sys.exit(main())
