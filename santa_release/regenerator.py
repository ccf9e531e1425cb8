"""Generator runtime prepended to legacy bundles that use lowered generators."""

from __future__ import annotations

RUNTIME_GLOBAL = "regeneratorRuntime"

# Babel's regenerator transform turns generator bodies into a state machine
# driven through `regeneratorRuntime`. This implements the calls it emits
# (mark, wrap, keys, values and the context methods) in ES5.
GENERATOR_RUNTIME = """\
(function (global) {
  if (global.regeneratorRuntime) return;
  var hasOwn = Object.prototype.hasOwnProperty;
  var iteratorSymbol = (typeof Symbol === "function" && Symbol.iterator) || "@@iterator";
  var ContinueSentinel = {};
  var SuspendedStart = "suspendedStart";
  var SuspendedYield = "suspendedYield";
  var Executing = "executing";
  var Completed = "completed";

  function Generator() {}
  var IteratorPrototype = {};
  IteratorPrototype[iteratorSymbol] = function () { return this; };
  var Gp = Generator.prototype = Object.create(IteratorPrototype);
  ["next", "throw", "return"].forEach(function (method) {
    Gp[method] = function (arg) { return this._invoke(method, arg); };
  });
  Gp.toString = function () { return "[object Generator]"; };

  function tryCatch(fn, obj, arg) {
    try {
      return {type: "normal", arg: fn.call(obj, arg)};
    } catch (err) {
      return {type: "throw", arg: err};
    }
  }

  function doneResult() {
    return {value: undefined, done: true};
  }

  function mark(genFun) {
    genFun.prototype = Object.create(Gp);
    return genFun;
  }

  function wrap(innerFn, outerFn, self, tryLocsList) {
    var protoGenerator = outerFn && outerFn.prototype instanceof Generator ? outerFn : Generator;
    var generator = Object.create(protoGenerator.prototype);
    var context = new Context(tryLocsList || []);
    generator._invoke = makeInvokeMethod(innerFn, self, context);
    return generator;
  }

  function makeInvokeMethod(innerFn, self, context) {
    var state = SuspendedStart;
    return function invoke(method, arg) {
      if (state === Executing) throw new Error("Generator is already running");
      if (state === Completed) {
        if (method === "throw") throw arg;
        return doneResult();
      }
      context.method = method;
      context.arg = arg;
      while (true) {
        var delegate = context.delegate;
        if (delegate) {
          var delegateResult = maybeInvokeDelegate(delegate, context);
          if (delegateResult) {
            if (delegateResult === ContinueSentinel) continue;
            return delegateResult;
          }
        }
        if (context.method === "next") {
          context.sent = context._sent = context.arg;
        } else if (context.method === "throw") {
          if (state === SuspendedStart) {
            state = Completed;
            throw context.arg;
          }
          context.dispatchException(context.arg);
        } else if (context.method === "return") {
          context.abrupt("return", context.arg);
        }
        state = Executing;
        var record = tryCatch(innerFn, self, context);
        if (record.type === "normal") {
          state = context.done ? Completed : SuspendedYield;
          if (record.arg === ContinueSentinel) continue;
          return {value: record.arg, done: context.done};
        }
        state = Completed;
        context.method = "throw";
        context.arg = record.arg;
      }
    };
  }

  function maybeInvokeDelegate(delegate, context) {
    var method = delegate.iterator[context.method];
    if (method === undefined) {
      context.delegate = null;
      if (context.method === "throw") {
        if (delegate.iterator["return"]) {
          context.method = "return";
          context.arg = undefined;
          maybeInvokeDelegate(delegate, context);
          if (context.method === "throw") return ContinueSentinel;
        }
        context.method = "throw";
        context.arg = new TypeError("The iterator does not provide a 'throw' method");
      }
      return ContinueSentinel;
    }
    var record = tryCatch(method, delegate.iterator, context.arg);
    if (record.type === "throw") {
      context.method = "throw";
      context.arg = record.arg;
      context.delegate = null;
      return ContinueSentinel;
    }
    var info = record.arg;
    if (!info) {
      context.method = "throw";
      context.arg = new TypeError("iterator result is not an object");
      context.delegate = null;
      return ContinueSentinel;
    }
    if (!info.done) return info;
    context[delegate.resultName] = info.value;
    context.next = delegate.nextLoc;
    if (context.method !== "return") {
      context.method = "next";
      context.arg = undefined;
    }
    context.delegate = null;
    return ContinueSentinel;
  }

  function pushTryEntry(locs) {
    var entry = {tryLoc: locs[0]};
    if (1 in locs) entry.catchLoc = locs[1];
    if (2 in locs) {
      entry.finallyLoc = locs[2];
      entry.afterLoc = locs[3];
    }
    this.tryEntries.push(entry);
  }

  function resetTryEntry(entry) {
    var record = entry.completion || {};
    record.type = "normal";
    delete record.arg;
    entry.completion = record;
  }

  function Context(tryLocsList) {
    this.tryEntries = [{tryLoc: "root"}];
    tryLocsList.forEach(pushTryEntry, this);
    this.reset(true);
  }

  Context.prototype = {
    constructor: Context,

    reset: function (skipTempReset) {
      this.prev = 0;
      this.next = 0;
      this.sent = this._sent = undefined;
      this.done = false;
      this.delegate = null;
      this.method = "next";
      this.arg = undefined;
      this.tryEntries.forEach(resetTryEntry);
      if (!skipTempReset) {
        for (var name in this) {
          if (name.charAt(0) === "t" && hasOwn.call(this, name) && !isNaN(+name.slice(1))) {
            this[name] = undefined;
          }
        }
      }
    },

    stop: function () {
      this.done = true;
      var rootRecord = this.tryEntries[0].completion;
      if (rootRecord.type === "throw") throw rootRecord.arg;
      return this.rval;
    },

    dispatchException: function (exception) {
      if (this.done) throw exception;
      var context = this;
      var record;
      function handle(loc, caught) {
        record.type = "throw";
        record.arg = exception;
        context.next = loc;
        if (caught) {
          context.method = "next";
          context.arg = undefined;
        }
        return !!caught;
      }
      for (var i = this.tryEntries.length - 1; i >= 0; --i) {
        var entry = this.tryEntries[i];
        record = entry.completion;
        if (entry.tryLoc === "root") return handle("end");
        if (entry.tryLoc <= this.prev) {
          var hasCatch = hasOwn.call(entry, "catchLoc");
          var hasFinally = hasOwn.call(entry, "finallyLoc");
          if (hasCatch && this.prev < entry.catchLoc) return handle(entry.catchLoc, true);
          if (hasFinally && this.prev < entry.finallyLoc) return handle(entry.finallyLoc);
          if (!hasCatch && !hasFinally) throw new Error("try statement without catch or finally");
        }
      }
    },

    abrupt: function (type, arg) {
      var finallyEntry = null;
      for (var i = this.tryEntries.length - 1; i >= 0; --i) {
        var entry = this.tryEntries[i];
        if (entry.tryLoc <= this.prev && hasOwn.call(entry, "finallyLoc") && this.prev < entry.finallyLoc) {
          finallyEntry = entry;
          break;
        }
      }
      if (finallyEntry && (type === "break" || type === "continue") &&
          finallyEntry.tryLoc <= arg && arg <= finallyEntry.finallyLoc) {
        finallyEntry = null;
      }
      var record = finallyEntry ? finallyEntry.completion : {};
      record.type = type;
      record.arg = arg;
      if (finallyEntry) {
        this.method = "next";
        this.next = finallyEntry.finallyLoc;
        return ContinueSentinel;
      }
      return this.complete(record);
    },

    complete: function (record, afterLoc) {
      if (record.type === "throw") throw record.arg;
      if (record.type === "break" || record.type === "continue") {
        this.next = record.arg;
      } else if (record.type === "return") {
        this.rval = this.arg = record.arg;
        this.method = "return";
        this.next = "end";
      } else if (record.type === "normal" && afterLoc) {
        this.next = afterLoc;
      }
      return ContinueSentinel;
    },

    finish: function (finallyLoc) {
      for (var i = this.tryEntries.length - 1; i >= 0; --i) {
        var entry = this.tryEntries[i];
        if (entry.finallyLoc === finallyLoc) {
          this.complete(entry.completion, entry.afterLoc);
          resetTryEntry(entry);
          return ContinueSentinel;
        }
      }
    },

    "catch": function (tryLoc) {
      for (var i = this.tryEntries.length - 1; i >= 0; --i) {
        var entry = this.tryEntries[i];
        if (entry.tryLoc === tryLoc) {
          var record = entry.completion;
          var thrown;
          if (record.type === "throw") {
            thrown = record.arg;
            resetTryEntry(entry);
          }
          return thrown;
        }
      }
      throw new Error("illegal catch attempt");
    },

    delegateYield: function (iterable, resultName, nextLoc) {
      this.delegate = {iterator: values(iterable), resultName: resultName, nextLoc: nextLoc};
      if (this.method === "next") this.arg = undefined;
      return ContinueSentinel;
    }
  };

  function keys(object) {
    var list = [];
    for (var key in object) list.push(key);
    list.reverse();
    return function next() {
      while (list.length) {
        var key = list.pop();
        if (key in object) {
          next.value = key;
          next.done = false;
          return next;
        }
      }
      next.done = true;
      return next;
    };
  }

  function values(iterable) {
    if (iterable) {
      var iteratorMethod = iterable[iteratorSymbol];
      if (iteratorMethod) return iteratorMethod.call(iterable);
      if (typeof iterable.next === "function") return iterable;
      if (!isNaN(iterable.length)) {
        var i = -1;
        var next = function next() {
          while (++i < iterable.length) {
            if (hasOwn.call(iterable, i)) {
              next.value = iterable[i];
              next.done = false;
              return next;
            }
          }
          next.value = undefined;
          next.done = true;
          return next;
        };
        return next.next = next;
      }
    }
    return {next: doneResult};
  }

  global.regeneratorRuntime = {mark: mark, wrap: wrap, keys: keys, values: values};
})(typeof globalThis !== "undefined" ? globalThis : typeof self !== "undefined" ? self : this);
"""


def with_generator_runtime(code: str) -> str:
    """Prefix `code` with the generator runtime when it references it."""
    if RUNTIME_GLOBAL not in code:
        return code
    return GENERATOR_RUNTIME + code
