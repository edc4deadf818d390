from cask.cask_repl import run

run()
