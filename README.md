# unionfskit

This package provides building blocks for file systems that work on paths.
Each file system is a Python object with methods such as `get_attr`,
`open_dir`, `open`, `create`, `mkdir`, `unlink` and `rename`. When an
operation fails, it raises `OSError` with the matching `errno`.

## What is in it

- **`unionfskit.filesystem`**
  - `FileSystem` is the base interface. Any operation a subclass does not
    provide raises `ENOSYS`.
  - `LoopbackFileSystem(root)` exposes a host directory.
  - `Attr` and `DirEntry` describe files and directory entries.
  - `FileHandle`, `DataFile` and `DevNullFile` are open files.
  - `copy_file(src_fs, dst_fs, src_name, dst_name)` copies one file between
    two file systems.
  - `fs_error(code, name)` builds the `OSError` for an errno.
- **`unionfskit.unionfs`**
  - `UnionFs` places one writable branch (index 0) over any number of
    read-only branches.
  - Changing a file that lives in a read-only branch first copies it up
    ("promotes" it) into the writable branch.
  - Deleting such a file writes a marker into the deletion directory of the
    writable branch. The marker is named by `file_path_hash` of the path.
  - `new_union_fs_from_roots(roots, options, ro_caching)` builds a union from
    directories.
  - Opening `.drop_cache` for writing drops the branch cache, the deletion
    cache and the caches of the branches.
- **`unionfskit.branches`**
  - `UnionFsOptions` holds the settings:
    - `branch_cache_ttl`
    - `deletion_cache_ttl`
    - `deletion_dir_name`
    - `hidden_files`
  - `BranchResult`, `UnionFsFile` and `UnionFsBase` do the bookkeeping for
    branch lookup, deletion markers and promotion.
- **`unionfskit.cachingfs`**: `CachingFileSystem(fs, ttl)` caches the
  following from the wrapped file system for `ttl` seconds:
  - attributes
  - directory listings
  - symlink targets
  - extended attributes

  Failures are never cached. Opening `.drop_cache` for writing clears the
  cache.
- **`unionfskit.timedcache`**: `TimedCache(fetch, ttl)` is a thread-safe
  cache whose entries expire. A `ttl` of zero or less keeps entries
  indefinitely.
- **`unionfskit.dircache`**
  - `DirCache` remembers the regular-file names of one directory and
    reloads them in the background.
  - `new_dirname_map` reads those names once.
- **`unionfskit.archivefs`**
  - `new_archive_file_system(name)` builds a read-only in-memory `Node` tree
    from a `.zip`, `.tar`, `.tar.gz` or `.tar.bz2` file.
  - Zip members are unpacked the first time they are read.
- **`unionfskit.multizip`**: `MultiZipFs` mounts an archive at `/<name>`
  when you call `symlink(target, name)`. The link appears as
  `config/<name>`, and `unlink(name)` removes the mount again.
- **`unionfskit.splicecopy`, `unionfskit.pipepair`, `unionfskit.pipepool`**
  (Linux only)
  - These copy between file descriptors through kernel pipes with
    `os.splice`.
  - A shared pool of pipe `Pair`s is reused; see `get`, `done`, `drop`,
    `total`, `used` and `clear_splice_pool`.
  - If no pipe pair can be obtained, `copy_fds` falls back to plain reads
    and writes.

## Installation

```
pip install unionfskit
```

## Examples

A union over two directories:

```python
from unionfskit.branches import UnionFsOptions
from unionfskit.unionfs import new_union_fs_from_roots

opts = UnionFsOptions(deletion_dir_name="DELETIONS", hidden_files=["hidden"])
ufs = new_union_fs_from_roots(["/tmp/rw", "/tmp/ro"], opts, True)
print(sorted(e.name for e in ufs.open_dir("")))
ufs.unlink("old.txt")  # leaves a deletion marker if old.txt is read-only
```

`deletion_dir_name` defaults to the empty string. Set it to a real
directory name, as above, so the markers are kept apart from your files.

Copying a file with splice:

```python
from unionfskit.splicecopy import copy_file

copy_file("dst.bin", "src.bin", 0o644)
```

Browsing an archive:

```python
from unionfskit.archivefs import new_archive_file_system

root = new_archive_file_system("bundle.zip")
node = root.lookup("subdir/file.txt")
print(node.get_attr().size, node.read(1024, 0))
```

Mounting archives by name:

```python
from unionfskit.multizip import MultiZipFs

mz = MultiZipFs()
mz.symlink("/data/bundle.zip", "bundle")
print(mz.list_dir(""))                 # ['bundle', 'config']
print(mz.readlink("config/bundle"))    # /data/bundle.zip
mz.unlink("bundle")
```

## What it does not do

- **No kernel mounting.** The file systems are objects that your own code
  calls. Nothing here attaches them to a mount point, so they cannot be
  reached through the operating system's file calls.
- **No automatic workspace discovery.** Nothing scans a directory tree to
  build a union for each workspace. Unions are built explicitly with
  `new_union_fs_from_roots` or `UnionFs`.
- **No commands.** The package installs no command-line programs.

## Running the tests

```
pip install -e .[test]
pytest
```